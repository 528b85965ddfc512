from flask import Blueprint

ledger_bp = Blueprint('ledger', __name__)

from rythm.ledger import routes
