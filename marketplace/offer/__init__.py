from flask import Blueprint

bp = Blueprint("offer", __name__, url_prefix="/stores")

from . import routes  # noqa: E402,F401
