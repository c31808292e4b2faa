from flask import Blueprint

inventory = Blueprint('inventory', __name__)

from clinic_pos.inventory import routes  # noqa: F401, E402
from clinic_pos.inventory import models  # noqa: F401, E402
