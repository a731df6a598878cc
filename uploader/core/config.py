from pydantic_settings import BaseSettings
from typing import List, Literal

class Settings(BaseSettings):
    AWS_REGION: str = "us-east-1"
    AWS_S3_BUCKET: str | None = None
    AWS_ACCESS_KEY_ID: str | None = None
    AWS_SECRET_ACCESS_KEY: str | None = None
    AWS_ENDPOINT_URL: str | None = None

    STORAGE_BACKEND: Literal["s3", "memory"] = "s3"
    UPLOAD_PREFIX: str = "uploads/"
    PUBLIC_BASE_URL: str | None = None

    MAX_FILE_SIZE: int = 5 * 1024 * 1024
    RATE_LIMIT_MAX: int = 10
    RATE_LIMIT_WINDOW_MS: int = 15 * 60 * 1000
    FILE_LIST_LIMIT: int = 20

    FRONTEND_ORIGINS: List[str] = [
        "http://localhost:3000",
        "https://cloud-file-uploader.vercel.app",
    ]
    # only enable behind a proxy that overwrites the header
    TRUST_FORWARDED_FOR: bool = False

    ENVIRONMENT: Literal["development", "production"] = "production"
    LOG_LEVEL: str = "INFO"

    HOST: str = "0.0.0.0"
    PORT: int = 5000

    class Config:
        env_file = ".env"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT == "development"

settings = Settings()
