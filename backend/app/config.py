# /backend/app/config.py

from pydantic import BaseModel
import os


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, str(default)).lower() == "true"


class Settings(BaseModel):
    # App Settings
    APP_NAME: str = "Fee-ver Medical Bill Analyzer"
    VERSION: str = "1.0.0"
    DEBUG: bool = True

    # Dify (hosted OCR / LLM workflows)
    DIFY_API_KEY: str = ""
    DIFY_API_URL: str = "https://api.dify.ai/v1"
    DIFY_EMAIL_API_KEY: str = ""
    DIFY_EMAIL_WORKFLOW_ID: str = ""
    DIFY_TIMEOUT: float = 120.0

    # Database (PostgreSQL reference rates)
    DB_HOST: str = ""
    DB_PORT: int = 5432
    DB_NAME: str = ""
    DB_USER: str = ""
    DB_PASSWORD: str = ""
    DB_SSL: bool = False
    DB_POOL_SIZE: int = 20
    DB_POOL_TIMEOUT: float = 2.0      # seconds to wait for a pooled connection
    DB_POOL_RECYCLE: int = 30

    # Analysis
    MATCH_STRATEGY: str = "keyword"   # keyword | similarity
    REFERENCE_SOURCE: str = "static"  # static | database (keyword strategy only)
    SIMILARITY_THRESHOLD: float = 0.3
    DUPLICATE_POLICY: str = "flagAll"  # flagAll | flagRedundantOnly
    CLAMP_PERCENTAGE: bool = False

    # File Upload
    MAX_FILE_SIZE: int = 10 * 1024 * 1024  # 10MB
    ALLOWED_EXTENSIONS: list = [".jpg", ".jpeg", ".png", ".webp", ".pdf"]

    # CORS
    CORS_ORIGINS: list = ["http://localhost:3000"]

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        # Load from environment variables
        self.DEBUG = _env_bool("DEBUG", self.DEBUG)

        self.DIFY_API_KEY = os.getenv("DIFY_API_KEY", self.DIFY_API_KEY)
        self.DIFY_API_URL = os.getenv("DIFY_API_URL", self.DIFY_API_URL)
        self.DIFY_EMAIL_API_KEY = os.getenv("DIFY_EMAIL_API_KEY", self.DIFY_EMAIL_API_KEY)
        self.DIFY_EMAIL_WORKFLOW_ID = os.getenv("DIFY_EMAIL_WORKFLOW_ID", self.DIFY_EMAIL_WORKFLOW_ID)
        self.DIFY_TIMEOUT = float(os.getenv("DIFY_TIMEOUT", self.DIFY_TIMEOUT))

        self.DB_HOST = os.getenv("DB_HOST", self.DB_HOST)
        self.DB_PORT = int(os.getenv("DB_PORT", self.DB_PORT))
        self.DB_NAME = os.getenv("DB_NAME", self.DB_NAME)
        self.DB_USER = os.getenv("DB_USER", self.DB_USER)
        self.DB_PASSWORD = os.getenv("DB_PASSWORD", self.DB_PASSWORD)
        self.DB_SSL = _env_bool("DB_SSL", self.DB_SSL)
        self.DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", self.DB_POOL_SIZE))
        self.DB_POOL_TIMEOUT = float(os.getenv("DB_POOL_TIMEOUT", self.DB_POOL_TIMEOUT))

        self.MATCH_STRATEGY = os.getenv("MATCH_STRATEGY", self.MATCH_STRATEGY).lower()
        self.REFERENCE_SOURCE = os.getenv("REFERENCE_SOURCE", self.REFERENCE_SOURCE).lower()
        self.SIMILARITY_THRESHOLD = float(
            os.getenv("SIMILARITY_THRESHOLD", self.SIMILARITY_THRESHOLD)
        )
        self.DUPLICATE_POLICY = os.getenv("DUPLICATE_POLICY", self.DUPLICATE_POLICY)
        self.CLAMP_PERCENTAGE = _env_bool("CLAMP_PERCENTAGE", self.CLAMP_PERCENTAGE)

    @property
    def database_configured(self) -> bool:
        return bool(self.DB_HOST and self.DB_NAME)

settings = Settings()
