import os
from dataclasses import dataclass
from datetime import timedelta
from zoneinfo import ZoneInfo

DEFAULT_TIMEZONE = "Asia/Ho_Chi_Minh"


def _env_int(name: str, default: int) -> int:
    v = os.getenv(name)
    if v is None or v == "":
        return default
    try:
        return int(v)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    v = os.getenv(name)
    if v is None or v == "":
        return default
    try:
        return float(v)
    except ValueError:
        return default


def _env_flag(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return v.strip() not in {"0", "false", "False", "no", "NO"}


@dataclass(frozen=True)
class Settings:
    timezone_name: str
    live_poll_seconds: float
    live_sync_enabled: bool
    io_retry_attempts: int
    io_retry_base_seconds: float
    recent_activity_hours: int

    @property
    def timezone(self) -> ZoneInfo:
        return ZoneInfo(self.timezone_name)

    @property
    def recent_activity_window(self) -> timedelta:
        return timedelta(hours=self.recent_activity_hours)


def get_settings() -> Settings:
    # Disable the live sync loop by default under pytest to keep tests deterministic.
    live_default = not bool(os.getenv("PYTEST_CURRENT_TEST"))

    return Settings(
        timezone_name=os.getenv("SHIFT_TIMEZONE", DEFAULT_TIMEZONE),
        live_poll_seconds=_env_float("LIVE_POLL_SECONDS", 60.0),
        live_sync_enabled=_env_flag("LIVE_SYNC_ENABLED", live_default),
        io_retry_attempts=max(1, _env_int("IO_RETRY_ATTEMPTS", 3)),
        io_retry_base_seconds=_env_float("IO_RETRY_BASE_SECONDS", 0.2),
        recent_activity_hours=_env_int("RECENT_ACTIVITY_HOURS", 24),
    )
