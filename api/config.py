"""
Environment-aware configuration.
Token lifetimes are fixed by the session protocol: 15 minutes for access
tokens and 7 days for refresh tokens.
"""
import os
from dotenv import load_dotenv
from datetime import timedelta

load_dotenv()  # Read .env if present


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


class BaseConfig:
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key")  # Set a strong key in production
    DEBUG = False
    TESTING = False
    # CORS: in dev we usually allow '*', in prod supply a comma-separated list in env
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")
    APP_ENV = os.getenv("APP_ENV", "dev")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    # Put werkzeug's ProxyFix in front of the app so remote_addr is the client ip
    TRUST_PROXY = _env_flag("TRUST_PROXY")

    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///quote-auth.db")
    SQLALCHEMY_ECHO = _env_flag("SQLALCHEMY_ECHO")

    # access tokens
    JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
    JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
    ACCESS_TOKEN_EXPIRES = timedelta(minutes=15)

    # refresh tokens
    REFRESH_TOKEN_EXPIRES = timedelta(days=7)
    TOKEN_STORE_BACKEND = os.getenv("TOKEN_STORE_BACKEND", "database")
    REFRESH_COOKIE_NAME = "refreshToken"
    REFRESH_COOKIE_SECURE = False


class DevelopmentConfig(BaseConfig):
    DEBUG = True
    # In dev, propagate exceptions so our error handler has full context
    PROPAGATE_EXCEPTIONS = True


class TestingConfig(BaseConfig):
    TESTING = True
    JWT_SECRET = "test-secret"
    DATABASE_URL = "sqlite://"
    LOG_LEVEL = "DEBUG"


class ProductionConfig(BaseConfig):
    DEBUG = False
    REFRESH_COOKIE_SECURE = True


def get_config(name: str | None):
    """
    Select config class.
    - If name is provided, choose by name.
    - Else choose based on APP_ENV (dev/test/prod).
    """
    if name:
        name = name.lower()
    env = (name or os.getenv("APP_ENV", "dev")).lower()
    if env in ["prod", "production"]:
        return ProductionConfig
    if env in ["test", "testing"]:
        return TestingConfig
    return DevelopmentConfig
