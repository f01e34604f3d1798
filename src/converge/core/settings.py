"""
Centralized settings for converge-core.

Manifesto:
    Retry windows, poll intervals and per-action rate budgets used to be
    literals scattered across call sites. ``ConvergeSettings`` gathers them
    into one validated, cached object that reads ``CONVERGE_*`` environment
    variables and ``.env`` files.

Examples:
    >>> settings = get_settings()
    >>> settings.default_rate
    20.0

    Per-action overrides use a JSON mapping::

        CONVERGE_ACTION_LIMITS='{"DescribeFlowStatus": 5}'

Tags:
    converge-core, configuration, settings, pydantic
"""

from __future__ import annotations

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_TRANSIENT_CODES = [
    "ClientError.NetworkError",
    "ClientError.HttpStatusCodeError",
    "InternalError",
    "RequestLimitExceeded",
    "FailedOperation.UnknownError",
    "ResourceInUse",
    "ResourceUnavailable",
]

DEFAULT_NOT_FOUND_PREFIXES = [
    "ResourceNotFound",
    "InvalidParameter.InstanceNotFound",
]


class ConvergeSettings(BaseSettings):
    """Converge-core configuration.

    All fields can be set via ``CONVERGE_*`` environment variables (e.g.
    ``CONVERGE_DEFAULT_RATE=10``) or a ``.env`` file.
    """

    model_config = SettingsConfigDict(
        env_prefix="CONVERGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_nested_delimiter="__",
    )

    # ── Rate limiting ────────────────────────────────────────────
    default_rate: float = Field(default=20.0, description="Calls per second per action")
    default_burst: float = Field(default=20.0, description="Bucket capacity per action")
    action_limits: dict[str, float] = Field(
        default_factory=dict,
        description="Per-action calls-per-second overrides",
    )
    rate_limit_max_wait: float = Field(
        default=10.0,
        description="Watchdog: longest a single acquire may block before failing open",
    )

    # ── Retry profiles ───────────────────────────────────────────
    short_read_interval: float = Field(default=5.0)
    short_read_deadline: float = Field(default=180.0)
    long_converge_interval: float = Field(default=10.0)
    long_converge_deadline: float = Field(default=1200.0)

    # ── Pagination ───────────────────────────────────────────────
    default_page_size: int = Field(default=20)

    # ── Identifiers ──────────────────────────────────────────────
    id_delimiter: str = Field(default="#")

    # ── Error classification ─────────────────────────────────────
    transient_error_codes: list[str] = Field(default_factory=lambda: list(DEFAULT_TRANSIENT_CODES))
    not_found_error_prefixes: list[str] = Field(
        default_factory=lambda: list(DEFAULT_NOT_FOUND_PREFIXES)
    )

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")
    service_name: str = Field(default="converge")

    @model_validator(mode="after")
    def _validate_windows(self) -> ConvergeSettings:
        positive = {
            "short_read_interval": self.short_read_interval,
            "short_read_deadline": self.short_read_deadline,
            "long_converge_interval": self.long_converge_interval,
            "long_converge_deadline": self.long_converge_deadline,
            "rate_limit_max_wait": self.rate_limit_max_wait,
        }
        for name, value in positive.items():
            if value <= 0:
                raise ValueError(f"{name} must be positive, got {value}")
        if self.default_page_size < 1:
            raise ValueError(f"default_page_size must be >= 1, got {self.default_page_size}")
        if self.short_read_deadline > self.long_converge_deadline:
            raise ValueError("short_read_deadline must not exceed long_converge_deadline")
        if not self.id_delimiter:
            raise ValueError("id_delimiter must not be empty")
        if self.log_format not in ("json", "console"):
            raise ValueError(f"log_format must be 'json' or 'console', got {self.log_format!r}")
        return self

    def rate_for(self, action: str) -> float:
        """Calls per second allowed for ``action``."""
        return self.action_limits.get(action, self.default_rate)


# ── Settings factory with caching ────────────────────────────────────────

_settings_cache: ConvergeSettings | None = None


def get_settings(*, _force_reload: bool = False) -> ConvergeSettings:
    """Load, validate, and cache a :class:`ConvergeSettings` instance."""
    global _settings_cache
    if _settings_cache is None or _force_reload:
        _settings_cache = ConvergeSettings()
    return _settings_cache


def clear_settings_cache() -> None:
    """Drop the cached settings (tests, reconfiguration)."""
    global _settings_cache
    _settings_cache = None


__all__ = [
    "ConvergeSettings",
    "DEFAULT_NOT_FOUND_PREFIXES",
    "DEFAULT_TRANSIENT_CODES",
    "clear_settings_cache",
    "get_settings",
]
