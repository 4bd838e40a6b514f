"""
StudyFlow Configuration
Supports AWS Parameter Store for production secrets
"""
import os
from functools import lru_cache

import boto3


def get_parameter(name: str, default: str = "") -> str:
    """Get parameter from AWS Parameter Store or environment"""
    # Environment variable takes precedence
    env_key = name.upper().replace("-", "_").replace("/", "_")
    if env_key in os.environ:
        return os.environ[env_key]

    if os.environ.get("USE_PARAMETER_STORE"):
        try:
            ssm = boto3.client("ssm", region_name=os.environ.get("AWS_REGION", "us-west-2"))
            path = os.environ.get("PARAMETER_STORE_PATH", "/studyflow/prod/")
            response = ssm.get_parameter(Name=f"{path}{name}", WithDecryption=True)
            return response["Parameter"]["Value"]
        except Exception:
            pass

    return default


def _flag(name: str, default: str = "1") -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes", "on")


class Config:
    """Base configuration"""
    # Flask
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-change-in-production")
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Database
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", "sqlite:///studyflow.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True}

    # Fix Render's postgres:// URL
    if SQLALCHEMY_DATABASE_URI.startswith("postgres://"):
        SQLALCHEMY_DATABASE_URI = SQLALCHEMY_DATABASE_URI.replace("postgres://", "postgresql://", 1)

    # Session
    SESSION_PERMANENT = False
    PERMANENT_SESSION_LIFETIME = 86400

    # Security
    WTF_CSRF_ENABLED = True
    WTF_CSRF_TIME_LIMIT = 3600
    PASSWORD_RESET_MAX_AGE = 3600
    LOGIN_LINK_MAX_AGE = 86400

    # Uploads
    MAX_CONTENT_LENGTH = 25 * 1024 * 1024
    UPLOAD_FOLDER = os.environ.get("UPLOAD_FOLDER", "/tmp/studyflow_uploads")

    # Guest mode (notes kept in the embedded key-value store)
    GUEST_MODE_ENABLED = _flag("GUEST_MODE_ENABLED")
    GUEST_STORE_PATH = os.environ.get("GUEST_STORE_PATH", "/tmp/studyflow_guest.sqlite")

    # Text extraction
    EXTRACTION_SERVICE_URL = os.environ.get("EXTRACTION_SERVICE_URL", "")
    EXTRACTION_SERVICE_TOKEN = os.environ.get("EXTRACTION_SERVICE_TOKEN", "")
    EXTRACTION_SERVICE_TIMEOUT = int(os.environ.get("EXTRACTION_SERVICE_TIMEOUT", "60"))
    EXTRACTION_WORKERS = int(os.environ.get("EXTRACTION_WORKERS", "4"))

    # OpenAI
    OPENAI_API_KEY = os.environ.get("OPENAI_API_KEY", "")
    OPENAI_MODEL = os.environ.get("OPENAI_MODEL", "gpt-4o-mini")
    OPENAI_TTS_MODEL = os.environ.get("OPENAI_TTS_MODEL", "tts-1")

    # ElevenLabs
    ELEVENLABS_API_KEY = os.environ.get("ELEVENLABS_API_KEY", "")

    # AWS
    AWS_REGION = os.environ.get("AWS_REGION", "us-west-2")
    AWS_S3_BUCKET = os.environ.get("AWS_S3_BUCKET", "")

    # Stripe
    STRIPE_PUBLISHABLE_KEY = os.environ.get("STRIPE_PUBLISHABLE_KEY", "")
    STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY", "")
    STRIPE_WEBHOOK_SECRET = os.environ.get("STRIPE_WEBHOOK_SECRET", "")
    STRIPE_PRICE_ID = os.environ.get("STRIPE_PRICE_ID", "price_premium_monthly")

    # Usage limits
    FREE_MONTHLY_TRANSFORMS = int(os.environ.get("FREE_MONTHLY_TRANSFORMS", "20"))

    # Rate Limiting
    RATELIMIT_ENABLED = True
    RATELIMIT_DEFAULT = "200 per day"
    RATELIMIT_STORAGE_URI = os.environ.get("REDIS_URL", "memory://")

    # App Version
    APP_VERSION = os.environ.get("APP_VERSION", "2026.10")
    BUILD_TIME = os.environ.get("BUILD_TIME", "")
    GIT_COMMIT = os.environ.get("GIT_COMMIT", "")


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    TESTING = False


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False
    TESTING = False

    # Override with Parameter Store in production
    SECRET_KEY = get_parameter("secret-key", Config.SECRET_KEY)
    OPENAI_API_KEY = get_parameter("openai-api-key", Config.OPENAI_API_KEY)
    ELEVENLABS_API_KEY = get_parameter("elevenlabs-api-key", Config.ELEVENLABS_API_KEY)
    STRIPE_SECRET_KEY = get_parameter("stripe-secret-key", Config.STRIPE_SECRET_KEY)
    STRIPE_WEBHOOK_SECRET = get_parameter("stripe-webhook-secret", Config.STRIPE_WEBHOOK_SECRET)
    EXTRACTION_SERVICE_TOKEN = get_parameter("extraction-service-token", Config.EXTRACTION_SERVICE_TOKEN)


class TestingConfig(Config):
    """Testing configuration"""
    DEBUG = True
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    WTF_CSRF_ENABLED = False
    RATELIMIT_ENABLED = False
    OPENAI_API_KEY = ""
    ELEVENLABS_API_KEY = ""
    AWS_S3_BUCKET = ""
    EXTRACTION_SERVICE_URL = ""


config = {
    "development": DevelopmentConfig,
    "production": ProductionConfig,
    "testing": TestingConfig,
    "default": DevelopmentConfig,
}


@lru_cache()
def get_config(env: str = None):
    """Get configuration by environment name"""
    env = env or os.environ.get("FLASK_ENV", "development")
    return config.get(env, DevelopmentConfig)
