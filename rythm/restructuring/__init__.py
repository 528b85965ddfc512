from flask import Blueprint

restructuring_bp = Blueprint('restructuring', __name__)

from rythm.restructuring import routes
