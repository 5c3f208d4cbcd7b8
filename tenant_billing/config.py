import os
# Define the base directory for the database file (the project root)
BASEDIR = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
DB_PATH = os.path.join(BASEDIR, 'billing.db')


class ValidationConfig:
    # Name format regexes and max lengths
    TENANT_NAME_REGEX = os.environ.get('TENANT_NAME_REGEX', r"^[^\W\d_]+(?:[ '\-][^\W\d_]+)*$")
    TENANT_NAME_MAX_LENGTH = int(os.environ.get('TENANT_NAME_MAX_LENGTH', 50))
    PROPERTY_NAME_REGEX = os.environ.get('PROPERTY_NAME_REGEX', r'^[\w .,\-/]+$')
    PROPERTY_NAME_MAX_LENGTH = int(os.environ.get('PROPERTY_NAME_MAX_LENGTH', 100))
    ENFORCE_UNIQUE_PROPERTY_NAME_CASE_INSENSITIVE = os.environ.get('ENFORCE_UNIQUE_PROPERTY_NAME_CASE_INSENSITIVE', '1') == '1'
    # Capacity limit on concurrent tenancies, when the property declares one
    ENFORCE_PROPERTY_CAPACITY = os.environ.get('ENFORCE_PROPERTY_CAPACITY', '1') == '1'


class BillingConfig:
    # Scale each allocation weight by the tenancy's occupied share of the charge month
    ALLOCATION_OCCUPANCY_WEIGHTING = os.environ.get('ALLOCATION_OCCUPANCY_WEIGHTING', '0') == '1'
    BATCH_MAX_WORKERS = int(os.environ.get('BATCH_MAX_WORKERS', 4))
    LOCK_TIMEOUT_SECONDS = float(os.environ.get('LOCK_TIMEOUT_SECONDS', 5))
    BILLING_PERIOD_LIST_LIMIT = int(os.environ.get('BILLING_PERIOD_LIST_LIMIT', 12))
    OCCUPANCY_HISTORY_LIMIT = int(os.environ.get('OCCUPANCY_HISTORY_LIMIT', 100))


class Config:
    """Base configuration class."""
    # Defaulting to a file-based SQLite database
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:///' + DB_PATH
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Secret Key is required by Flask
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'a-very-secret-and-hard-to-guess-string'

    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

class TestingConfig(Config):
    """Configuration used specifically for running Pytest."""
    TESTING = True
    # Crucial: Use an in-memory SQLite database for fast, isolated testing
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    # Disabling logging during tests for cleaner output
    SQLALCHEMY_ECHO = False
    LOG_LEVEL = 'WARNING'
