from flask import Blueprint

sync = Blueprint('sync', __name__)

from tillpoint.sync import routes  # noqa: F401, E402
from tillpoint.sync import models  # noqa: F401, E402  registers Synced* with the remote bind
