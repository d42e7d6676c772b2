"""
Configuration for ExamStar
Environment-keyed config classes, loaded from environment variables / .env
"""
import os
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name, default='False'):
    return os.environ.get(name, default).lower() in ('true', '1', 'yes')


class Config:
    """Base configuration"""
    SECRET_KEY = os.environ.get('SECRET_KEY', 'dev-secret-key-change-me')
    DEBUG = False
    TESTING = False

    # Sessions / cookies
    SESSION_COOKIE_SECURE = True
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'

    # Single authorized administrator (Firebase Auth email)
    ADMIN_EMAIL = os.environ.get('ADMIN_EMAIL', '')

    # Firebase
    FIREBASE_CREDENTIALS = os.environ.get('FIREBASE_CREDENTIALS')
    FIREBASE_CREDENTIALS_FILE = os.environ.get('FIREBASE_CREDENTIALS_FILE', 'serviceAccountKey.json')
    FIREBASE_STORAGE_BUCKET = os.environ.get('FIREBASE_STORAGE_BUCKET')

    # Versioned cache substrate
    CACHE_DIR = os.environ.get('CACHE_DIR', os.path.join('instance', 'cache'))
    CACHE_MAX_ENTRIES = int(os.environ.get('CACHE_MAX_ENTRIES', '0'))

    # Public site
    BASE_URL = os.environ.get('BASE_URL', 'https://examstar.vercel.app')

    # Rate limiting
    RATE_LIMIT_DEFAULT = os.environ.get('RATE_LIMIT_DEFAULT', '200 per hour')
    RATE_LIMIT_SUGGESTIONS = os.environ.get('RATE_LIMIT_SUGGESTIONS', '5 per minute')

    # Flask-Mail (suggestion notifications)
    MAIL_SERVER = os.environ.get('MAIL_SERVER', 'smtp.gmail.com')
    MAIL_PORT = int(os.environ.get('MAIL_PORT', '587'))
    MAIL_USE_TLS = _env_bool('MAIL_USE_TLS', 'True')
    MAIL_USERNAME = os.environ.get('MAIL_USERNAME')
    MAIL_PASSWORD = os.environ.get('MAIL_PASSWORD')
    MAIL_DEFAULT_SENDER = os.environ.get('MAIL_DEFAULT_SENDER', 'noreply@examstar.app')
    MAIL_SUPPRESS_SEND = False

    # Logging
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    LOG_JSON = False

    @classmethod
    def init_app(cls, app):
        app.config.from_object(cls)


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    SESSION_COOKIE_SECURE = False
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'DEBUG')


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False
    SESSION_COOKIE_SECURE = True
    LOG_JSON = True


class TestingConfig(Config):
    """Testing configuration"""
    TESTING = True
    DEBUG = True
    SESSION_COOKIE_SECURE = False
    ADMIN_EMAIL = 'admin@examstar.test'
    CACHE_DIR = None
    MAIL_SUPPRESS_SEND = True
    RATE_LIMIT_SUGGESTIONS = '1000 per minute'


config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': ProductionConfig,
}
