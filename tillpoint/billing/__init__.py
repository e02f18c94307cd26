from flask import Blueprint

billing = Blueprint('billing', __name__)

from tillpoint.billing import routes  # noqa: F401, E402
from tillpoint.billing import models  # noqa: F401, E402  — registers Order/Quote with SQLAlchemy
