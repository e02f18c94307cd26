from flask import Blueprint

inventory = Blueprint('inventory', __name__)

from tillpoint.inventory import routes  # noqa: F401, E402
from tillpoint.inventory import models  # noqa: F401, E402  — registers Product/Batch/… with SQLAlchemy
