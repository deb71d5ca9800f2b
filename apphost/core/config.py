import os

from pydantic import Field
from pydantic_settings import BaseSettings

BASE_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir, os.pardir))


class Settings(BaseSettings):
    """Application settings, read once from the environment and `.env`."""

    APP_NAME: str = "apphost"
    APP_DESCRIPTION: str = "HTTP application host"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = Field(default="development")

    SERVER_HOST: str = Field(default="0.0.0.0")
    PORT: int = Field(default=3000, ge=0, le=65535)
    KEEP_ALIVE_TIMEOUT: int = 5
    SHUTDOWN_GRACE_PERIOD: int = 30
    # 0 disables the per-request timeout
    REQUEST_TIMEOUT: float = Field(default=60.0, ge=0)

    FRONTEND_URL: str = Field(default="")
    CORS_ALLOW_METHODS: list = ["GET", "HEAD", "PUT", "PATCH", "POST", "DELETE"]
    CORS_ALLOW_HEADERS: list = ["*"]

    BASE_DIR: str = BASE_DIR
    UPLOAD_DIR: str = Field(default=os.path.join(BASE_DIR, "uploads"))

    BODY_LIMIT: int = 50 * 1024 * 1024
    FORM_PARAMETER_LIMIT: int = 1000
    JSON_STRICT: bool = True
    COMPRESSION_MIN_SIZE: int = 1024

    LOG_LEVEL: str = Field(default="INFO")
    LOG_TO_FILE: bool = Field(default=True)

    WEBSOCKET_PATH: str = "/ws"
    WEBSOCKET_PING_INTERVAL: float = 30.0
    WEBSOCKET_PONG_TIMEOUT: float = 10.0
    WEBSOCKET_MAX_MISSED_PONGS: int = 3
    WEBSOCKET_MAX_CONNECTIONS: int = 10000
    WEBSOCKET_INACTIVE_TIMEOUT: float = 1800.0

    SCHEDULER_ENABLED: bool = True
    SCHEDULER_TIMEZONE: str = "UTC"
    UPLOAD_TMP_MAX_AGE_HOURS: int = 24
    STATUS_BROADCAST_INTERVAL: int = 60

    @property
    def CORS_ORIGINS(self):
        """Only the configured frontend may make cross-origin requests."""
        origin = self.FRONTEND_URL.strip().rstrip("/")
        return [origin] if origin else []

    @property
    def HOST(self):
        return self.SERVER_HOST

    @property
    def is_production(self):
        return self.ENVIRONMENT.lower() == "production"

    @property
    def data_dir(self):
        return os.path.join(self.BASE_DIR, "data")

    @property
    def LOG_FILE_PATH(self):
        return os.path.join(self.data_dir, "logs", "app.log")

    @property
    def UPLOAD_TMP_DIR(self):
        return os.path.join(self.UPLOAD_DIR, "tmp")

    class Config:
        env_file = os.path.join(BASE_DIR, ".env")
        case_sensitive = True
        extra = "ignore"


settings = Settings()
