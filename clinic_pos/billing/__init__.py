from flask import Blueprint

billing = Blueprint('billing', __name__)

from clinic_pos.billing import routes  # noqa: F401, E402
from clinic_pos.billing import models  # noqa: F401, E402  registers Bill/BillItem with SQLAlchemy
