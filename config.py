"""Configuration module for Flask application."""
import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class Config:
    """Base configuration class."""

    # Flask
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    DEBUG = os.getenv('FLASK_DEBUG', '0') == '1'
    ENV = os.getenv('FLASK_ENV', 'development')

    # Preferred URL scheme (for url_for with _external=True)
    PREFERRED_URL_SCHEME = os.getenv('PREFERRED_URL_SCHEME', 'https')

    # Database - Support multiple environment variable naming conventions
    # Priority: DATABASE_URL > DB_* > POSTGRES_*
    DATABASE_URL = os.getenv('DATABASE_URL')

    if not DATABASE_URL:
        # Try DB_* variables (Docker style)
        DB_HOST = os.getenv('DB_HOST') or os.getenv('POSTGRES_HOST', 'localhost')
        DB_PORT = os.getenv('DB_PORT') or os.getenv('POSTGRES_PORT', '5432')
        DB_NAME = os.getenv('DB_NAME') or os.getenv('POSTGRES_DB', 'payhook')
        DB_USER = os.getenv('DB_USER') or os.getenv('POSTGRES_USER', 'payhook')
        DB_PASSWORD = os.getenv('DB_PASSWORD') or os.getenv('POSTGRES_PASSWORD', 'payhook')

        DATABASE_URL = (
            f"postgresql+psycopg://{DB_USER}:{DB_PASSWORD}"
            f"@{DB_HOST}:{DB_PORT}/{DB_NAME}"
        )

    # SQLAlchemy
    SQLALCHEMY_DATABASE_URI = DATABASE_URL
    SQLALCHEMY_ECHO = os.getenv('SQLALCHEMY_ECHO', 'false').lower() == 'true'

    # Business Information (used in receipts)
    BUSINESS_NAME = os.getenv('BUSINESS_NAME', 'T Creative')

    # Square (payment processor)
    SQUARE_ACCESS_TOKEN = os.getenv('SQUARE_ACCESS_TOKEN')
    SQUARE_LOCATION_ID = os.getenv('SQUARE_LOCATION_ID')
    SQUARE_ENVIRONMENT = os.getenv('SQUARE_ENVIRONMENT', 'sandbox')
    SQUARE_API_VERSION = os.getenv('SQUARE_API_VERSION', '2024-10-17')
    SQUARE_WEBHOOK_SIGNATURE_KEY = os.getenv('SQUARE_WEBHOOK_SIGNATURE_KEY', '')
    # Public URL Square signs against. Falls back to request.url when unset.
    WEBHOOK_PUBLIC_URL = os.getenv('WEBHOOK_PUBLIC_URL')

    # Zoho Books (accounting ledger)
    BOOKS_API_DOMAIN = os.getenv('BOOKS_API_DOMAIN', 'https://www.zohoapis.com')
    BOOKS_ORGANIZATION_ID = os.getenv('BOOKS_ORGANIZATION_ID')
    BOOKS_ACCESS_TOKEN = os.getenv('BOOKS_ACCESS_TOKEN')

    # Outbound HTTP
    HTTP_TIMEOUT = int(os.getenv('HTTP_TIMEOUT', '10'))  # seconds

    # Email configuration
    MAIL_SERVER = os.getenv('SMTP_HOST', 'smtp.gmail.com')
    MAIL_PORT = int(os.getenv('SMTP_PORT', 587))
    MAIL_USE_TLS = True
    MAIL_USE_SSL = False
    MAIL_USERNAME = os.getenv('SMTP_USER') or ''
    MAIL_PASSWORD = os.getenv('SMTP_PASSWORD') or ''
    MAIL_DEFAULT_SENDER = (
        os.getenv('SMTP_FROM')
        or MAIL_USERNAME
        or 'no-reply@localhost'
    )
    MAIL_SUPPRESS_SEND = os.getenv('MAIL_SUPPRESS_SEND', 'false').lower() == 'true'

    # Outbox
    OUTBOX_MAX_ATTEMPTS = int(os.getenv('OUTBOX_MAX_ATTEMPTS', '5'))


class TestingConfig(Config):
    """Configuration used by the test suite (SQLite in memory, no network)."""

    TESTING = True
    DEBUG = False
    ENV = 'testing'
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_ECHO = False
    # The test client builds request.url from this scheme
    PREFERRED_URL_SCHEME = 'http'

    SQUARE_ACCESS_TOKEN = None
    SQUARE_LOCATION_ID = None
    SQUARE_WEBHOOK_SIGNATURE_KEY = ''
    WEBHOOK_PUBLIC_URL = None
    BOOKS_ORGANIZATION_ID = None
    BOOKS_ACCESS_TOKEN = None

    MAIL_SUPPRESS_SEND = True
    MAIL_USERNAME = ''
