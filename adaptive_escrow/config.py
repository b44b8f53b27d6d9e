# adaptive_escrow/config.py
import os


class BaseConfig:
    CELERY_BROKER_URL = os.environ.get("CELERY_BROKER_URL", "redis://redis:6379/0")
    CELERY_RESULT_BACKEND = os.environ.get("CELERY_RESULT_BACKEND", "redis://redis:6379/0")

    # --- DB ---
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", "postgresql+psycopg2://escrow_user:escrow_pass@db:5432/adaptive_escrow"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    JSON_SORT_KEYS = False

    CORS_ORIGINS = os.environ.get("CORS_ORIGINS", "*")
    LOG_LEVEL = os.environ.get("LOG_LEVEL")  # falls back to DEBUG/INFO from DEBUG

    # --- Reasoning provider (OpenAI-compatible chat completions) ---
    OPENAI_API_KEY = os.environ.get("OPENAI_API_KEY")
    OPENAI_MODEL = os.environ.get("OPENAI_MODEL", "gpt-4")
    OPENAI_BASE_URL = os.environ.get("OPENAI_BASE_URL", "https://api.openai.com/v1")
    REASONING_TIMEOUT = float(os.environ.get("REASONING_TIMEOUT", "15"))
    SUGGESTION_TTL_HOURS = int(os.environ.get("SUGGESTION_TTL_HOURS", "24"))

    # --- Mock blockchain ---
    BLOCKCHAIN_NETWORK = os.environ.get("BLOCKCHAIN_NETWORK", "testnet")
    BLOCKCHAIN_SIMULATED_DELAY = float(os.environ.get("BLOCKCHAIN_SIMULATED_DELAY", "2"))


class DevelopmentConfig(BaseConfig):
    DEBUG = True
    ENV = "development"


class ProductionConfig(BaseConfig):
    DEBUG = False
    ENV = "production"


class TestingConfig(BaseConfig):
    TESTING = True
    DEBUG = False
    ENV = "testing"
    SQLALCHEMY_DATABASE_URI = os.environ.get("TEST_DATABASE_URL", "sqlite:///:memory:")
    # Tests never reach the real provider; the engine falls back to the rule table
    OPENAI_API_KEY = None
    BLOCKCHAIN_SIMULATED_DELAY = 0.0
