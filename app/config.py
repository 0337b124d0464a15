import argparse
import os
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


# Check if --env is provided in command line arguments
def get_env_file() -> Optional[str]:
    # In container environments APP_ENV is set in the container config
    app_env = os.environ.get("APP_ENV")
    if app_env:
        return None

    parser = argparse.ArgumentParser()
    parser.add_argument(
        "--env",
        type=str,
        choices=["dev", "docker", "prod", "local", "rc"],
        default="local",
        help="Specify the environment to use (dev, prod, local, docker default=local).",
    )

    # Parse only known args to avoid conflicts with other arguments
    try:
        args, _ = parser.parse_known_args()
        env_file = f".{args.env}.env"
        if os.path.exists(env_file):
            return env_file
    except SystemExit:
        pass

    return ".env" if os.path.exists(".env") else None


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=get_env_file(), extra="ignore")

    APP_NAME: str = "Virtual Staging API"
    APP_ENV: str = "local"
    APP_URL: str = "http://localhost:3000"
    WORKERS_COUNT: int = 1
    HOST: str = "localhost"
    PORT: int = 8900
    RELOAD: bool = True
    API_PREFIX: str = "/api/v1"

    DATABASE_HOST: str = "localhost"
    DATABASE_PORT: int = 5432
    DATABASE_NAME: str = "virtual_staging"
    DATABASE_USER: str = "postgres"
    DATABASE_PASSWORD: str = "postgres"
    # Full SQLAlchemy URL, takes precedence over the DATABASE_* parts
    DATABASE_URL: Optional[str] = None
    DB_ECHO: bool = False

    AWS_ACCESS_KEY_ID: Optional[str] = None
    AWS_SECRET_ACCESS_KEY: Optional[str] = None
    AWS_DEFAULT_REGION: str = "us-east-1"
    AWS_S3_BUCKET_NAME: str = "staging-images"

    JWT_SECRET_KEY: str = "change-me"
    JWT_ALGORITHM: str = "HS256"

    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_WEBHOOK_SECRET: Optional[str] = None
    STRIPE_PRICE_STANDARD: Optional[str] = None
    STRIPE_PRICE_PROFESSIONAL: Optional[str] = None
    STRIPE_PRICE_ENTERPRISE: Optional[str] = None
    STRIPE_TOPUP_10: Optional[str] = None
    STRIPE_TOPUP_25: Optional[str] = None
    STRIPE_TOPUP_50: Optional[str] = None

    GOOGLE_GEMINI_API_KEY: Optional[str] = None
    GEMINI_IMAGE_MODEL: str = "gemini-3-pro-image-preview"
    REPLICATE_API_TOKEN: Optional[str] = None
    REPLICATE_MODEL_VERSION: str = "lucataco/sdxl-controlnet:latest"
    DECOR8_API_KEY: Optional[str] = None
    PROVIDER_TIMEOUT_SECONDS: float = 120.0

    AI_DEFAULT_PROVIDER: str = "gemini"
    AI_FALLBACK_PROVIDER: str = "decor8"
    AI_ENABLE_FALLBACK: bool = True
    PROVIDER_HEALTH_TTL_SECONDS: int = 60

    DEFAULT_CREDITS: int = 10
    CREDITS_PER_STAGING: int = 1
    CREDITS_PER_REMIX: int = 1

    @property
    def DB_URL(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return f"postgresql+asyncpg://{self.DATABASE_USER}:{self.DATABASE_PASSWORD}@{self.DATABASE_HOST}:{self.DATABASE_PORT}/{self.DATABASE_NAME}"

    @property
    def plan_price_ids(self) -> dict:
        return {
            "standard": self.STRIPE_PRICE_STANDARD,
            "professional": self.STRIPE_PRICE_PROFESSIONAL,
            "enterprise": self.STRIPE_PRICE_ENTERPRISE,
        }

    @property
    def topup_price_ids(self) -> dict:
        return {
            "topup_10": self.STRIPE_TOPUP_10,
            "topup_25": self.STRIPE_TOPUP_25,
            "topup_50": self.STRIPE_TOPUP_50,
        }


def load_settings(**overrides) -> Settings:
    return Settings(**overrides)
