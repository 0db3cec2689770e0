from __future__ import annotations

from pathlib import Path
from typing import Any, Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_DATA_DIR = ".mdx-publisher"
BLOB_STORE_BACKENDS: frozenset[str] = frozenset({"s3", "filesystem"})
DEFAULT_EMOJI_ASSET_URL_TEMPLATE = (
    "https://cdn.jsdelivr.net/gh/jdecked/twemoji@latest/assets/svg/{codepoint}.svg"
)
_DATA_DIR_RELATIVE_DEFAULTS: tuple[tuple[str, Path], ...] = (
    ("log_dir", Path("logs")),
    ("blob_store_dir", Path("blobs")),
)
_PATH_FIELDS: tuple[str, ...] = (
    "data_dir",
    *(field_name for field_name, _ in _DATA_DIR_RELATIVE_DEFAULTS),
)
_BOOLEAN_COERCION_FIELDS: tuple[str, ...] = (
    "telemetry_enabled",
    "icon_probe_enabled",
)


def _default_in_data_dir(relative_path: Path) -> Path:
    return Path(DEFAULT_DATA_DIR) / relative_path


def _data_dir_default_note(relative_path: Path) -> str:
    return f"Defaults to `${{MDX_PUBLISHER_DATA_DIR}}/{relative_path}` when not explicitly set."


def _resolve_path(value: str | Path) -> Path:
    return Path(value).expanduser().resolve()


def _parse_bool_with_default(value: Any, *, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        if value == 1:
            return True
        if value == 0:
            return False
        return default
    if not isinstance(value, str):
        return default

    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def _normalize_optional_text(value: Any) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        return None
    normalized = value.strip()
    if normalized:
        return normalized
    return None


class AppSettings(BaseSettings):
    """
    Canonical runtime configuration.

    Every option is read from `MDX_PUBLISHER_*` environment variables (or `.env`)
    and documents its own default here.
    """

    model_config = SettingsConfigDict(
        env_prefix="MDX_PUBLISHER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # Core paths.
    data_dir: Path = Field(
        default=Path(DEFAULT_DATA_DIR),
        description="Root runtime directory for logs and locally stored blobs.",
    )

    # Blob storage for migrated images.
    blob_store_backend: Literal["s3", "filesystem"] = Field(
        default="filesystem",
        description="Where migrated images are written: an S3-compatible bucket or a local directory.",
    )
    blob_store_dir: Path = Field(
        default=_default_in_data_dir(Path("blobs")),
        description=f"Directory for the filesystem backend. {_data_dir_default_note(Path('blobs'))}",
    )
    blob_store_bucket: str | None = Field(
        default=None,
        description="Bucket name for the s3 backend (Cloudflare R2, MinIO, AWS S3).",
    )
    blob_store_endpoint_url: str | None = Field(
        default=None,
        description="Custom S3 endpoint, e.g. https://<account>.r2.cloudflarestorage.com.",
    )
    blob_store_region: str | None = Field(
        default=None,
        description="Region passed to the S3 client. R2 accepts `auto`.",
    )
    blob_store_access_key_id: str | None = Field(default=None)
    blob_store_secret_access_key: str | None = Field(default=None)
    public_base_url: str = Field(
        default="http://127.0.0.1:8000/blobs",
        description="Public base URL under which stored objects are reachable.",
    )

    # Image migration.
    image_fetch_timeout_seconds: float = Field(
        default=30.0,
        description="Per-request timeout for downloading source images.",
    )
    image_fetch_user_agent: str = Field(
        default="mdx-publisher/0.1",
        description="User-Agent sent when downloading source images.",
    )

    # Header rendering.
    icon_probe_enabled: bool = Field(
        default=True,
        description="Probe the emoji asset CDN before replacing a symbolic icon name with its URL.",
    )
    icon_probe_timeout_seconds: float = Field(default=5.0)
    emoji_asset_url_template: str = Field(
        default=DEFAULT_EMOJI_ASSET_URL_TEMPLATE,
        description="URL template for emoji assets; `{codepoint}` is substituted.",
    )
    article_timezone: str = Field(
        default="UTC",
        description="Timezone the front matter date is rendered in.",
    )
    publish_path_template: str = Field(
        default="src/content/blog/{slug}.mdx",
        description="Repository path handed to the publishing step; `{slug}` is substituted.",
    )

    # Logging and telemetry.
    log_dir: Path = Field(
        default=_default_in_data_dir(Path("logs")),
        description=f"Application log directory. {_data_dir_default_note(Path('logs'))}",
    )
    log_level: str = Field(
        default="INFO",
        description="Console log level. File logs always capture DEBUG.",
    )
    telemetry_enabled: bool = Field(
        default=True,
        description="Enable structured telemetry events.",
    )
    telemetry_sink: Literal["none", "log"] = Field(
        default="log",
        description="Telemetry sink backend.",
    )

    @field_validator("blob_store_backend", mode="before")
    @classmethod
    def _normalize_backend(cls, value: Any) -> str:
        normalized = str(value).strip().lower() if value is not None else "filesystem"
        if normalized not in BLOB_STORE_BACKENDS:
            raise ValueError(
                "MDX_PUBLISHER_BLOB_STORE_BACKEND must be one of: "
                f"{', '.join(sorted(BLOB_STORE_BACKENDS))}"
            )
        return normalized

    @field_validator("telemetry_sink", mode="before")
    @classmethod
    def _normalize_telemetry_sink(cls, value: Any) -> str:
        normalized = str(value).strip().lower() if value is not None else "log"
        if normalized not in {"none", "log"}:
            raise ValueError("MDX_PUBLISHER_TELEMETRY_SINK must be one of: none, log")
        return normalized

    @field_validator("public_base_url", mode="before")
    @classmethod
    def _normalize_public_base_url(cls, value: Any) -> str:
        normalized = _normalize_optional_text(value)
        if normalized is None:
            raise ValueError("MDX_PUBLISHER_PUBLIC_BASE_URL must not be empty")
        return normalized.rstrip("/")

    @field_validator("image_fetch_user_agent", mode="before")
    @classmethod
    def _normalize_user_agent(cls, value: Any) -> str:
        return _normalize_optional_text(value) or "mdx-publisher/0.1"

    @field_validator("article_timezone", mode="before")
    @classmethod
    def _validate_timezone(cls, value: Any) -> str:
        normalized = _normalize_optional_text(value) or "UTC"
        try:
            ZoneInfo(normalized)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(
                f"MDX_PUBLISHER_ARTICLE_TIMEZONE is not a known timezone: {normalized}"
            ) from exc
        return normalized

    @field_validator("publish_path_template", mode="before")
    @classmethod
    def _validate_publish_path_template(cls, value: Any) -> str:
        normalized = _normalize_optional_text(value)
        if normalized is None or "{slug}" not in normalized:
            raise ValueError("MDX_PUBLISHER_PUBLISH_PATH_TEMPLATE must contain `{slug}`")
        return normalized

    @field_validator(*_PATH_FIELDS, mode="before")
    @classmethod
    def _normalize_paths(cls, value: Any) -> Any:
        if value is None:
            return None
        return _resolve_path(value)

    @field_validator(*_BOOLEAN_COERCION_FIELDS, mode="before")
    @classmethod
    def _normalize_booleans(cls, value: Any, info: ValidationInfo) -> bool:
        field_name = info.field_name
        assert field_name is not None
        default_value = cls.model_fields[field_name].default
        assert isinstance(default_value, bool)
        return _parse_bool_with_default(value, default=default_value)

    @field_validator(
        "blob_store_bucket",
        "blob_store_endpoint_url",
        "blob_store_region",
        "blob_store_access_key_id",
        "blob_store_secret_access_key",
        mode="before",
    )
    @classmethod
    def _normalize_optional_strings(cls, value: Any) -> str | None:
        return _normalize_optional_text(value)


def _validate_blob_store_configuration(settings: AppSettings) -> None:
    if settings.blob_store_backend != "s3":
        return

    errors: list[str] = []
    if settings.blob_store_bucket is None:
        errors.append("MDX_PUBLISHER_BLOB_STORE_BUCKET is required for the s3 backend.")
    if (settings.blob_store_access_key_id is None) != (
        settings.blob_store_secret_access_key is None
    ):
        errors.append(
            "MDX_PUBLISHER_BLOB_STORE_ACCESS_KEY_ID and "
            "MDX_PUBLISHER_BLOB_STORE_SECRET_ACCESS_KEY must be set together."
        )
    if "public_base_url" not in settings.model_fields_set:
        errors.append("MDX_PUBLISHER_PUBLIC_BASE_URL is required for the s3 backend.")

    if errors:
        bullets = "\n".join(f"- {message}" for message in errors)
        raise ValueError(
            "Invalid blob store configuration:\n"
            f"{bullets}"
        )


def _apply_path_defaults(settings: AppSettings) -> AppSettings:
    updates: dict[str, Path] = {}
    for field_name, relative_default in _DATA_DIR_RELATIVE_DEFAULTS:
        if field_name in settings.model_fields_set:
            continue
        updates[field_name] = settings.data_dir / relative_default
    if not updates:
        return settings
    return settings.model_copy(update=updates)


def _resolve_path_fields(settings: AppSettings) -> AppSettings:
    resolved_updates = {
        field_name: _resolve_path(getattr(settings, field_name))
        for field_name in _PATH_FIELDS
    }
    return settings.model_copy(update=resolved_updates)


def load_settings() -> AppSettings:
    settings = AppSettings()
    _validate_blob_store_configuration(settings)
    settings = _apply_path_defaults(settings)
    settings = _resolve_path_fields(settings)
    return settings
