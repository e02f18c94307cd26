from flask import Blueprint

customers = Blueprint('customers', __name__)

from tillpoint.customers import routes  # noqa: F401, E402
from tillpoint.customers import models  # noqa: F401, E402  — registers Customer with SQLAlchemy
