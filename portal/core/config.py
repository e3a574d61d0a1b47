from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List

class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    APP_ENV: str = "local"
    APP_NAME: str = "service-request-portal"

    JWT_SECRET: str = "change_me_portal"
    JWT_TTL_MINUTES: int = 1440

    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5000"

    DATABASE_URL: str
    REDIS_URL: str

    S3_ENDPOINT: str
    S3_ACCESS_KEY: str
    S3_SECRET_KEY: str
    S3_BUCKET: str
    S3_REGION: str = "us-east-1"
    S3_USE_SSL: bool = False
    MAX_FILE_MB: int = 10
    MAX_IMPORT_MB: int = 50

    DEFAULT_TIMEZONE: str = "America/New_York"
    DUE_SOON_HOURS: int = 24

    NOTIFICATION_DELIVERY: str = "auto"  # auto | inline | celery
    EMAIL_PROVIDER: str = "dummy"  # dummy | smtp | service
    EMAIL_SERVICE_URL: str = "http://email-service:8010"
    INTERNAL_SERVICE_TOKEN: str = "change_me_internal_service_token"
    SMTP_HOST: str = ""
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_FROM: str = ""
    SMTP_USE_TLS: bool = True
    SMTP_USE_SSL: bool = False

    BOOTSTRAP_ADMIN_ENABLED: bool = True
    BOOTSTRAP_ADMIN_EMAIL: str = "admin@example.com"
    BOOTSTRAP_ADMIN_PASSWORD: str = "admin123"
    BOOTSTRAP_ADMIN_FIRST_NAME: str = "System"
    BOOTSTRAP_ADMIN_LAST_NAME: str = "Administrator"

    # Compose/infra vars that may exist in shared .env
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = "postgres"
    POSTGRES_DB: str = "portal"

    @property
    def cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def max_file_bytes(self) -> int:
        return int(self.MAX_FILE_MB) * 1024 * 1024

    @property
    def max_import_bytes(self) -> int:
        return int(self.MAX_IMPORT_MB) * 1024 * 1024

settings = Settings()
