from pathlib import Path

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parent.parent.parent  # project root
ENV_PATH = BASE_DIR / ".env"

# Load .env into the process environment before Settings reads it
load_dotenv(dotenv_path=ENV_PATH)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        extra="ignore",
        case_sensitive=False,
    )

    DATABASE_URL: str
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    DB_AUTO_CREATE: bool = True

    JWT_SECRET: str
    JWT_ALG: str = "HS256"
    JWT_ACCESS_MINUTES: int = 720

    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:5173",
    ]

    # Payment processor
    STRIPE_SECRET_KEY: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""
    STRIPE_CONNECT_CLIENT_ID: str = ""
    STRIPE_CONNECT_REDIRECT_URL: str = "http://localhost:8000/connect/callback"

    # Marketplace
    PLATFORM_FEE_PERCENT: float = 10.0
    DEFAULT_CURRENCY: str = "USD"
    AFFILIATE_LINK_BASE_URL: str = "http://localhost:5173/ref"


settings = Settings()
