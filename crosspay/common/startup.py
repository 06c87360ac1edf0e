"""Startup-time helpers for safe config logging."""

from crosspay.common.config import CommonSettings
from crosspay.common.logging import logger


SECRET_MARKERS = ("key", "secret", "password", "token")


def _safe_value(name: str, value) -> str:
    """Redact values whose setting name looks secret, and DSN credentials."""

    if any(marker in name for marker in SECRET_MARKERS):
        return "<redacted>"
    text = str(value)
    if name.endswith("_dsn") and "@" in text:
        scheme, _, rest = text.partition("://")
        return f"{scheme}://<redacted>@{rest.split('@', 1)[1]}"
    return text


def log_startup_config(config: CommonSettings, keys: list[str]) -> None:
    """Log selected settings for quick troubleshooting."""

    snapshot = {"service": config.service_name}
    for key in keys:
        snapshot[key] = _safe_value(key, getattr(config, key, "<unset>"))
    logger.info("startup_config=%s", snapshot)
