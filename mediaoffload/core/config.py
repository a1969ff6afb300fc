from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, PositiveFloat, PositiveInt, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

MAX_DELETE_CHUNK_SIZE = 1000
SUPPORTED_OBJECT_ACLS = {"private", "public-read"}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="MEDIAOFFLOAD_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = "MediaOffload"
    environment: str = "production"
    api_host: str = "0.0.0.0"
    api_port: int = 8080
    log_level: str = "INFO"

    state_root: Path = Field(default=Path("/state"))
    uploads_root: Path = Field(default=Path("/uploads"))
    database_url: str | None = None

    bulk_batch_max_items: PositiveInt = 50
    bulk_batch_max_mb: PositiveFloat = 150.0
    bulk_item_max_mb: PositiveFloat = 10.0
    bulk_retry_item_max_mb: PositiveFloat = 100.0

    run_lock_ttl_seconds: PositiveInt = 3600
    stall_timeout_seconds: PositiveInt = 600
    stall_check_interval_seconds: PositiveInt = 900
    worker_poll_seconds: PositiveInt = 5
    inline_dispatch: bool = False

    delete_chunk_size: PositiveInt = MAX_DELETE_CHUNK_SIZE
    delete_notice_ttl_seconds: PositiveInt = 120
    delete_local_after_offload: bool = False

    secret_key: str = "change-me"
    admin_api_key: str | None = None
    viewer_api_key: str | None = None
    action_token_ttl_seconds: PositiveInt = 86400

    storage_provider: str = "s3"
    storage_bucket: str = "media"
    storage_region: str = "us-east-1"
    storage_endpoint_url: str | None = None
    storage_access_key_id: str | None = None
    storage_secret_access_key: str | None = None
    storage_path_style: bool = True
    storage_domain: str | None = None
    storage_base_prefix: str = ""
    storage_object_acl: str = "public-read"
    storage_connect_timeout_seconds: PositiveInt = 5

    @field_validator("state_root", "uploads_root", mode="before")
    @classmethod
    def _normalize_path(cls, value: str | Path) -> Path:
        raw = str(value)
        if "~" in raw:
            raise ValueError("Home expansion syntax is not allowed in paths")
        if "$" in raw:
            raise ValueError("Environment variable syntax is not allowed in paths")
        path = Path(raw)
        if not path.is_absolute():
            raise ValueError("Path settings must be absolute")
        return path

    @field_validator("storage_base_prefix", mode="before")
    @classmethod
    def _normalize_prefix(cls, value: str | None) -> str:
        if value is None:
            return ""
        parts = [part for part in str(value).replace("\\", "/").split("/") if part not in {"", "."}]
        if ".." in parts:
            raise ValueError("storage_base_prefix cannot contain '..'")
        return "/".join(parts)

    @model_validator(mode="after")
    def _validate_runtime_constraints(self) -> "Settings":
        self.state_root = self.state_root.resolve(strict=False)
        self.uploads_root = self.uploads_root.resolve(strict=False)
        self.state_root.mkdir(parents=True, exist_ok=True)

        if self.delete_chunk_size > MAX_DELETE_CHUNK_SIZE:
            raise ValueError(f"delete_chunk_size cannot exceed {MAX_DELETE_CHUNK_SIZE}")

        if self.bulk_batch_max_mb < self.bulk_item_max_mb:
            raise ValueError("bulk_batch_max_mb must be greater than or equal to bulk_item_max_mb")

        if self.bulk_retry_item_max_mb < self.bulk_item_max_mb:
            raise ValueError("bulk_retry_item_max_mb must be greater than or equal to bulk_item_max_mb")

        normalized_acl = self.storage_object_acl.lower().strip()
        if normalized_acl not in SUPPORTED_OBJECT_ACLS:
            raise ValueError(f"storage_object_acl must be one of {sorted(SUPPORTED_OBJECT_ACLS)}")
        self.storage_object_acl = normalized_acl

        if self.storage_domain:
            domain = self.storage_domain.strip()
            if not domain.startswith(("http://", "https://")):
                raise ValueError("storage_domain must include the http(s):// scheme")
            self.storage_domain = domain.rstrip("/") + "/"

        return self

    @property
    def effective_database_url(self) -> str:
        if self.database_url:
            return self.database_url
        db_path = self.state_root / "mediaoffload.sqlite3"
        return f"sqlite:///{db_path.as_posix()}"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
