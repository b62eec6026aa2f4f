from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any, Literal

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

DEFAULT_DATA_DIR = ".claimcheck"
DEFAULT_CAPTION_VIDEO_HOSTS: tuple[str, ...] = (
    "youtube.com",
    "www.youtube.com",
    "m.youtube.com",
    "music.youtube.com",
    "youtu.be",
)
_DATA_DIR_RELATIVE_DEFAULTS: tuple[tuple[str, Path], ...] = (
    ("db_path", Path("state.db")),
    ("log_dir", Path("logs")),
)
_PATH_FIELDS: tuple[str, ...] = (
    "data_dir",
    *(field_name for field_name, _ in _DATA_DIR_RELATIVE_DEFAULTS),
)
_BOOLEAN_COERCION_FIELDS: tuple[str, ...] = (
    "persistence_enabled",
    "telemetry_enabled",
)


def _default_in_data_dir(relative_path: Path) -> Path:
    return Path(DEFAULT_DATA_DIR) / relative_path


def _data_dir_default_note(relative_path: Path) -> str:
    return f"Defaults to `${{CLAIMCHECK_DATA_DIR}}/{relative_path}` when not explicitly set."


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

    Every option is read from `CLAIMCHECK_*` environment variables (or `.env`).
    Upstream credentials are optional here: a missing credential is reported per
    request as a misconfiguration instead of preventing startup.
    """

    model_config = SettingsConfigDict(
        env_prefix="CLAIMCHECK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # Core paths.
    data_dir: Path = Field(
        default=Path(DEFAULT_DATA_DIR),
        description="Root runtime directory for local state and logs.",
    )
    db_path: Path = Field(
        default=_default_in_data_dir(Path("state.db")),
        description=f"SQLite database path. {_data_dir_default_note(Path('state.db'))}",
    )

    # Rate limiting.
    rate_limit_max_requests: int = Field(
        default=10,
        ge=1,
        le=10_000,
        description="Maximum check requests allowed per identifier in each window.",
    )
    rate_limit_window_seconds: int = Field(
        default=60,
        ge=1,
        le=3600,
        description="Sliding rate-limit window size in seconds.",
    )
    rate_limit_sweep_interval_seconds: int = Field(
        default=300,
        ge=1,
        description="Cadence of the in-process limiter sweep that drops stale identifiers.",
    )
    rate_limit_prefix: str = Field(
        default="claimcheck:ratelimit",
        description="Key prefix used by the distributed rate limiter.",
    )
    upstash_redis_rest_url: str | None = Field(
        default=None,
        description=(
            "Upstash Redis REST URL. When set together with the token, the distributed "
            "rate limiter is used for the whole process lifetime."
        ),
    )
    upstash_redis_rest_token: str | None = Field(
        default=None,
        description="Upstash Redis REST token.",
    )

    # Audio transcription job service.
    transcription_api_key: str | None = Field(
        default=None,
        description="API key for the subtitle transcription job service.",
    )
    transcription_base_url: str = Field(
        default="https://frontend-beryl-gamma-80.vercel.app",
        description="Base URL of the subtitle transcription job service.",
    )
    transcription_language: str = Field(
        default="pt",
        description="Spoken-language hint sent with each upload.",
    )
    transcription_model: str = Field(
        default="small",
        description="Speech model size requested from the transcription service.",
    )
    transcription_http_timeout_seconds: float = Field(
        default=30.0,
        description="HTTP timeout for each transcription service request.",
    )
    transcription_poll_interval_seconds: float = Field(
        default=3.0,
        description="Delay between transcription job status polls.",
    )
    transcription_poll_max_attempts: int = Field(
        default=60,
        ge=1,
        description="Maximum status polls before a transcription job is considered timed out.",
    )

    # Video captions.
    caption_preferred_language: str = Field(
        default="pt",
        description="Caption language requested first for short-video links.",
    )
    caption_video_hosts: Annotated[tuple[str, ...], NoDecode] = Field(
        default=DEFAULT_CAPTION_VIDEO_HOSTS,
        description="Hosts whose links are resolved through captions instead of page fetches.",
    )
    caption_min_chars: int = Field(
        default=100,
        description="Captions shorter than this are rejected as inconclusive.",
    )
    caption_max_chars: int = Field(
        default=10_000,
        description="Captions longer than this are truncated with a warning.",
    )

    # Generic web pages.
    web_fetch_timeout_seconds: float = Field(
        default=12.0,
        description="HTTP timeout for fetching linked web pages.",
    )
    web_user_agent: str = Field(
        default="claimcheck/0.1 (+https://github.com/claimcheck/claimcheck)",
        description="User-Agent sent when fetching linked web pages.",
    )
    web_min_chars: int = Field(
        default=200,
        description="Readable page text shorter than this is rejected.",
    )
    web_max_chars: int = Field(
        default=10_000,
        description="Readable page text longer than this is truncated with a warning.",
    )

    # Analysis model.
    gemini_api_key: str | None = Field(
        default=None,
        description="Gemini API key. Requests fail with SERVER_MISCONFIG while it is missing.",
    )
    gemini_model: str = Field(
        default="gemini-2.0-flash",
        description="Gemini model used for content analysis.",
    )
    analysis_max_chars: int = Field(
        default=10_000,
        description="Sanitized text sent to the model is capped at this length.",
    )
    analysis_language: str = Field(
        default="pt-BR",
        description="Language tag reported in analysis metadata.",
    )

    # Persistence and HTTP surface.
    persistence_enabled: bool = Field(
        default=True,
        description="Record analyses and trending aggregates in the local database.",
    )
    cors_allow_origins: Annotated[tuple[str, ...], NoDecode] = Field(
        default=("*",),
        description="Origins allowed to call the check endpoint from a browser.",
    )

    # Logging.
    log_dir: Path = Field(
        default=_default_in_data_dir(Path("logs")),
        description=f"Directory for backend log files. {_data_dir_default_note(Path('logs'))}",
    )
    log_level: str = Field(
        default="INFO",
        description="Console log level (stdout).",
    )

    # Telemetry.
    telemetry_enabled: bool = Field(
        default=True,
        description="Enable lightweight internal telemetry events.",
    )
    telemetry_sink: Literal["none", "log"] = Field(
        default="log",
        description=(
            "Telemetry sink backend. `log` emits structured telemetry locally; "
            "`none` disables sink output."
        ),
    )

    @property
    def distributed_rate_limit_configured(self) -> bool:
        return self.upstash_redis_rest_url is not None and self.upstash_redis_rest_token is not None

    @field_validator("telemetry_sink", mode="before")
    @classmethod
    def _normalize_telemetry_sink(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("CLAIMCHECK_TELEMETRY_SINK must be a string.")
        normalized = value.strip().lower()
        if normalized in {"none", "log"}:
            return normalized
        raise ValueError("CLAIMCHECK_TELEMETRY_SINK must be set to: none, log.")

    @field_validator("transcription_base_url", mode="before")
    @classmethod
    def _normalize_transcription_base_url(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("CLAIMCHECK_TRANSCRIPTION_BASE_URL must be a string.")
        normalized = value.strip().rstrip("/")
        if not normalized:
            raise ValueError("CLAIMCHECK_TRANSCRIPTION_BASE_URL must not be empty.")
        return normalized

    @field_validator("caption_video_hosts", mode="before")
    @classmethod
    def _normalize_caption_video_hosts(cls, value: Any) -> tuple[str, ...]:
        if isinstance(value, str):
            raw_hosts: list[Any] = value.split(",")
        elif isinstance(value, (list, tuple)):
            raw_hosts = list(value)
        else:
            raise ValueError("CLAIMCHECK_CAPTION_VIDEO_HOSTS must be a comma-separated string.")
        hosts = tuple(
            host.strip().lower() for host in raw_hosts if isinstance(host, str) and host.strip()
        )
        if not hosts:
            raise ValueError("CLAIMCHECK_CAPTION_VIDEO_HOSTS must name at least one host.")
        return hosts

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def _normalize_cors_allow_origins(cls, value: Any) -> tuple[str, ...]:
        if isinstance(value, str):
            return tuple(origin.strip() for origin in value.split(",") if origin.strip())
        if isinstance(value, (list, tuple)):
            return tuple(str(origin).strip() for origin in value if str(origin).strip())
        raise ValueError("CLAIMCHECK_CORS_ALLOW_ORIGINS must be a comma-separated string.")

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
        "upstash_redis_rest_url",
        "upstash_redis_rest_token",
        "transcription_api_key",
        "gemini_api_key",
        mode="before",
    )
    @classmethod
    def _normalize_optional_strings(cls, value: Any) -> str | None:
        return _normalize_optional_text(value)


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
    settings = _apply_path_defaults(settings)
    return _resolve_path_fields(settings)
