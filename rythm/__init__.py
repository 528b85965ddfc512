"""Application factory and initialization"""
import logging
from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_login import LoginManager
from flask_migrate import Migrate
from config import config

db = SQLAlchemy()
login_manager = LoginManager()
migrate = Migrate()

LOG_FORMAT = '%(asctime)s %(levelname)s [%(name)s] %(message)s'

def configure_logging(app):
    """Attach one stream handler to the package logger"""
    logger = logging.getLogger('rythm')
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)
    logger.setLevel(getattr(logging, str(app.config.get('LOG_LEVEL', 'INFO')).upper(), logging.INFO))
    logger.propagate = False
    return logger

def create_app(config_name='default'):
    """Create and configure the Flask application"""
    app = Flask(__name__)
    app.config.from_object(config[config_name])

    configure_logging(app)

    # Initialize extensions
    db.init_app(app)
    login_manager.init_app(app)
    migrate.init_app(app, db)

    # Configure login manager
    login_manager.login_view = 'auth.login'
    login_manager.login_message = 'Please log in to access this page.'
    login_manager.login_message_category = 'info'

    from rythm.errors import ErrorHandler, register_error_handlers
    ErrorHandler(app)
    register_error_handlers(app)

    from rythm.services.notifications import ChangeNotifier
    from rythm.services.monitoring import LoanMonitor
    ChangeNotifier(app)
    monitor = LoanMonitor(app)

    # Register blueprints
    from rythm.auth import auth_bp
    from rythm.main import main_bp
    from rythm.monitoring import monitoring_bp
    from rythm.disbursement import disbursement_bp
    from rythm.ledger import ledger_bp
    from rythm.restructuring import restructuring_bp

    app.register_blueprint(auth_bp, url_prefix='/auth')
    app.register_blueprint(main_bp, url_prefix='/')
    app.register_blueprint(monitoring_bp, url_prefix='/monitoring')
    app.register_blueprint(disbursement_bp, url_prefix='/disbursement')
    app.register_blueprint(ledger_bp, url_prefix='/ledger')
    app.register_blueprint(restructuring_bp, url_prefix='/restructuring')

    from rythm.utils.rounding import format_currency, format_currency_with_symbol
    app.add_template_filter(format_currency, 'currency')
    app.add_template_filter(format_currency_with_symbol, 'currency_symbol')

    # Token for plain HTML action forms
    from flask_wtf.csrf import generate_csrf
    app.jinja_env.globals['csrf_token'] = generate_csrf

    # Context processor for global variables
    @app.context_processor
    def inject_settings():
        from rythm.models import SystemSettings
        from datetime import datetime
        settings = SystemSettings.get_settings()
        return dict(
            system_settings=settings,
            now=datetime.now,
            today=datetime.now().date()
        )

    if app.config.get('MONITORING_AUTOSTART'):
        monitor.start()

    app.logger.info('RYTHM application created with %s configuration', config_name)
    return app
