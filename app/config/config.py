import os
from pathlib import Path
from pydantic_settings import BaseSettings
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    # Application settings
    APP_NAME: str = "KoliGo"
    DEBUG: bool = os.getenv("DEBUG", "false").lower() == "true"
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")

    # Database settings
    DATABASE_URL: str = os.getenv(
        "DATABASE_URL", "sqlite+aiosqlite:///./koligo.db"
    )
    TEST_DATABASE_URL: str = os.getenv("TEST_DATABASE_URL", "sqlite+aiosqlite://")

    # Database connection settings
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 1800

    # Redis change feed
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379")
    CHANGE_FEED_PREFIX: str = "koligo:changes"

    # Backend call settings
    BACKEND_CALL_TIMEOUT: float = 15.0

    # Subscription reconnect policy
    RECONNECT_MAX_ATTEMPTS: int = 5
    RECONNECT_INITIAL_DELAY: float = 1.0
    RECONNECT_MAX_DELAY: float = 30.0

    # Max rows kept per live list (messages, tracking events, notifications)
    LIVE_LIST_MAX_ITEMS: int = 500

    # AWS
    AWS_SECRET_KEY: str | None = os.getenv("AWSSecretKey")
    AWS_ACCESS_KEY_ID: str | None = os.getenv("AWSAccessKeyId")
    S3_BUCKET_NAME: str = os.getenv("S3_BUCKET_NAME", "koligo-media")
    MESSAGE_IMAGES_FOLDER: str = "message-images"
    PROOF_PHOTOS_FOLDER: str = "proof-photos"

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_DIR: str = str(Path(__file__).parent.parent.parent / "logs")


settings = Settings()
