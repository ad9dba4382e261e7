"""Service configuration read from environment variables."""
import os
from dataclasses import dataclass
from typing import Mapping, Optional


def _get_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name, '').strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


def _get_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name, '').strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")


@dataclass(frozen=True)
class ServiceConfig:
    log_level: str = 'INFO'
    table_name: Optional[str] = None
    cache_ttl_seconds: float = 3600.0
    summary_delay_scale: float = 1.0
    default_limit: int = 20
    max_limit: int = 100
    notification_topic_arn: Optional[str] = None
    calendar_feed_url: Optional[str] = None
    import_days_ahead: int = 90
    timeout_seconds: int = 30

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> 'ServiceConfig':
        """Load configuration; malformed numbers raise ValueError."""
        env = os.environ if env is None else env

        config = cls(
            log_level=env.get('LOG_LEVEL', 'INFO'),
            table_name=env.get('EVENTS_TABLE_NAME') or None,
            cache_ttl_seconds=_get_float(env, 'SUMMARY_CACHE_TTL_SECONDS', 3600.0),
            summary_delay_scale=_get_float(env, 'SUMMARY_DELAY_SCALE', 1.0),
            default_limit=_get_int(env, 'QUERY_DEFAULT_LIMIT', 20),
            max_limit=_get_int(env, 'QUERY_MAX_LIMIT', 100),
            notification_topic_arn=env.get('NOTIFICATION_TOPIC_ARN') or None,
            calendar_feed_url=env.get('CALENDAR_FEED_URL') or None,
            import_days_ahead=_get_int(env, 'IMPORT_DAYS_AHEAD', 90),
            timeout_seconds=_get_int(env, 'TIMEOUT_SECONDS', 30),
        )

        if config.cache_ttl_seconds <= 0:
            raise ValueError("SUMMARY_CACHE_TTL_SECONDS must be positive")
        if config.summary_delay_scale < 0:
            raise ValueError("SUMMARY_DELAY_SCALE must not be negative")
        if not 1 <= config.default_limit <= config.max_limit:
            raise ValueError(
                "QUERY_DEFAULT_LIMIT must be between 1 and QUERY_MAX_LIMIT"
            )
        return config
