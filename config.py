import json
from pathlib import Path
from typing import Annotated, Any, List

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parent

load_dotenv()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=str(BASE_DIR / ".env"), extra="ignore")

    app_env: str = Field(default="dev", alias="APP_ENV")
    port: int = Field(default=8000, alias="PORT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    database_url: str = Field(default="mongodb://localhost:27017", alias="DATABASE_URL")
    database_name: str = Field(default="cyclops", alias="DATABASE_NAME")

    jwt_secret: str = Field(default="dev-secret-change", alias="JWT_SECRET")
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    jwt_expire_days: int = Field(default=30, alias="JWT_EXPIRE_DAYS")

    cors_origins: Annotated[List[str], NoDecode] = Field(default=["http://localhost:3000"], alias="CORS_ORIGINS")

    upload_dir: Path = Field(default=BASE_DIR / "uploads", alias="UPLOAD_DIR")
    max_upload_bytes: int = Field(default=5 * 1024 * 1024, alias="MAX_UPLOAD_BYTES")
    default_cover_image: str = Field(default="uploads/workspaces/default.png", alias="DEFAULT_COVER_IMAGE")

    verification_code_ttl_minutes: int = Field(default=10, alias="VERIFICATION_CODE_TTL_MINUTES")
    verify_rate_limit: int = Field(default=5, alias="VERIFY_RATE_LIMIT")
    verify_rate_window_seconds: int = Field(default=15 * 60, alias="VERIFY_RATE_WINDOW_SECONDS")

    sse_ping_seconds: int = Field(default=20, alias="SSE_PING_SECONDS")
    sse_queue_size: int = Field(default=100, alias="SSE_QUEUE_SIZE")

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _split_origins(cls, v: Any) -> Any:
        if not isinstance(v, str):
            return v
        raw = v.strip()
        if raw.startswith("["):
            return json.loads(raw)
        return [origin.strip() for origin in raw.split(",") if origin.strip()]

    @property
    def is_production(self) -> bool:
        return self.app_env.lower() in {"prod", "production"}


settings = Settings()
