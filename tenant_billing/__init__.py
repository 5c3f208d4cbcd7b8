import logging

from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from .config import Config, TestingConfig

# Initialize SQLAlchemy outside the create_app function
db = SQLAlchemy()


def setup_logging(app):
    """Attach a single stream handler to the package logger at LOG_LEVEL."""
    level = getattr(logging, str(app.config.get('LOG_LEVEL', 'INFO')).upper(), logging.INFO)
    package_logger = logging.getLogger(__name__)
    if not package_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(
            '%(asctime)s | %(levelname)s | %(name)s | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))
        package_logger.addHandler(handler)
    package_logger.setLevel(level)


def create_app(config_class=Config, config_name=None):
    # map friendly names to classes
    if config_name:
        if config_name == 'testing':
            config_class = TestingConfig
        else:
            config_class = config_name   # allow import path string fallback

    # 1. Application Setup
    app = Flask(__name__)
    # Load configuration from the specified class (defaulting to Config)
    app.config.from_object(config_class)
    setup_logging(app)

    # 2. Database Initialization
    db.init_app(app)

    # 3. Register Blueprints (Routes) and domain error translation
    from .routes import register_blueprints
    from .errors import register_error_handlers
    register_blueprints(app)
    register_error_handlers(app)

    # 4. Import Models (Required to create the database tables)
    from . import models

    # 5. Database Table Creation (Inside application context)
    with app.app_context():
        db.create_all()

    return app
