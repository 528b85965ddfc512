from flask import Blueprint

disbursement_bp = Blueprint('disbursement', __name__)

from rythm.disbursement import routes
