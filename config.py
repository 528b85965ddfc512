import os
from datetime import timedelta
from dotenv import load_dotenv

load_dotenv()

class Config:
    """Base configuration"""
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-secret-key-change-in-production'
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:///rythm.db'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_pre_ping': True,
        'pool_recycle': 300,
    }

    # Session configuration
    PERMANENT_SESSION_LIFETIME = timedelta(hours=8)
    SESSION_COOKIE_SECURE = False  # Set to True in production with HTTPS
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'

    # Logging
    LOG_LEVEL = os.environ.get('LOG_LEVEL') or 'INFO'

    # File upload settings
    UPLOAD_FOLDER = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'rythm/static/uploads')
    MAX_CONTENT_LENGTH = 20 * 1024 * 1024  # 20MB max contract size

    # Pagination
    ITEMS_PER_PAGE = 25

    # Institution defaults
    DEFAULT_CURRENCY = 'TZS'
    DEFAULT_APP_NAME = 'RYTHM Microfinance'
    INSTITUTION_NAME = os.environ.get('INSTITUTION_NAME') or 'RYTHM Microfinance Limited'
    MSP_CODE = os.environ.get('MSP_CODE') or 'MSP001'

    # Lending defaults
    DEFAULT_INTEREST_RATE = 15  # Annual percentage
    DEFAULT_TERM_MONTHS = 12
    PROCESSING_FEE_RATE = 3  # Percentage of the loan amount
    RECONCILIATION_TOLERANCE = 1000

    # Monitoring
    MONITORING_REFRESH_SECONDS = int(os.environ.get('MONITORING_REFRESH_SECONDS') or 30)
    MONITORING_AUTOSTART = os.environ.get('MONITORING_AUTOSTART', 'false').lower() == 'true'

    # Error reports kept in memory
    ERROR_QUEUE_SIZE = 100

class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    SQLALCHEMY_ECHO = False

class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False
    TESTING = False
    SESSION_COOKIE_SECURE = True
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Strict'
    SEND_FILE_MAX_AGE_DEFAULT = 31536000  # 1 year for static files

    # Security headers
    WTF_CSRF_ENABLED = True
    WTF_CSRF_TIME_LIMIT = 3600

    MONITORING_AUTOSTART = True

    # Database optimization for production
    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_pre_ping': True,
        'pool_recycle': 300,
        'pool_size': 10,
        'max_overflow': 20
    }

class TestingConfig(Config):
    """Testing configuration"""
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    SQLALCHEMY_ENGINE_OPTIONS = {}
    WTF_CSRF_ENABLED = False
    MONITORING_AUTOSTART = False
    LOG_LEVEL = 'WARNING'

config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig
}
