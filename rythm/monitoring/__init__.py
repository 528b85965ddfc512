from flask import Blueprint

monitoring_bp = Blueprint('monitoring', __name__)

from rythm.monitoring import routes
