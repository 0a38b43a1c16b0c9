# livefeed/config.py
from dataclasses import dataclass, field
from dotenv import load_dotenv, find_dotenv
from enum import Enum
from typing import Dict, Optional
import os
import logging

from livefeed.errors import ConfigurationError

# Load nearest .env from project tree, don't override existing process env
load_dotenv(find_dotenv(usecwd=True), override=False)

logger = logging.getLogger(__name__)


class DeliveryMode(str, Enum):
    """How the engine receives data from the endpoint."""
    STREAM = "stream"  # persistent WebSocket channel
    POLL = "poll"      # periodic HTTP GET


class DisconnectPolicy(str, Enum):
    """What happens to the visible snapshot when the channel drops."""
    KEEP = "keep"    # keep last-good records until no-data or grace timeout
    CLEAR = "clear"  # clear records as soon as the channel degrades


class Settings:
    """Environment-backed settings with deprecation mapping."""

    def __init__(self):
        # Endpoint
        self.ENDPOINT = (os.getenv("LIVEFEED_ENDPOINT") or os.getenv("LIVEFEED_WS_URL") or "").strip()
        self.MODE = (os.getenv("LIVEFEED_MODE") or "stream").strip().lower()
        self.POLL_PATH = (os.getenv("LIVEFEED_POLL_PATH") or "/data").strip()
        self.SESSION_TOKEN = (os.getenv("LIVEFEED_SESSION_TOKEN") or "").strip()

        # Timing (milliseconds)
        self.POLL_INTERVAL_MS = _int_env("LIVEFEED_POLL_INTERVAL_MS", 1000)
        self.HEARTBEAT_INTERVAL_MS = _int_env("LIVEFEED_HEARTBEAT_INTERVAL_MS", 5000)
        self.LIVENESS_TIMEOUT_MS = _int_env("LIVEFEED_LIVENESS_TIMEOUT_MS", 15000)
        self.FLASH_MS = _int_env("LIVEFEED_FLASH_MS", 600)
        self.RECONNECT_DELAY_MS = _int_env("LIVEFEED_RECONNECT_DELAY_MS", 1000)
        self.TIMEOUT_MS = _int_env("LIVEFEED_TIMEOUT_MS", 10000)

        # Stale snapshot handling
        self.DISCONNECT_POLICY = (os.getenv("LIVEFEED_DISCONNECT_POLICY") or "keep").strip().lower()
        grace = (os.getenv("LIVEFEED_DISCONNECT_GRACE_MS") or "").strip()
        self.DISCONNECT_GRACE_MS = _parse_int("LIVEFEED_DISCONNECT_GRACE_MS", grace) if grace else None

        # Logging
        self.LOG_LEVEL = (os.getenv("LIVEFEED_LOG_LEVEL") or "INFO").strip().upper()
        self.LOG_FILE = (os.getenv("LIVEFEED_LOG_FILE") or "").strip() or None

        # Deprecation warnings
        if os.getenv("LIVEFEED_WS_URL"):
            logger.warning("DEPRECATED: LIVEFEED_WS_URL is deprecated, use LIVEFEED_ENDPOINT instead")


def _parse_int(name: str, raw: str) -> int:
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer", details={"name": name, "value": raw})


def _int_env(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    return _parse_int(name, raw)


@dataclass(frozen=True)
class FeedConfig:
    """Runtime configuration for one feed engine instance.

    All timings are in milliseconds. ``liveness_timeout_ms`` of 0 disables
    silent-channel detection; ``disconnect_grace_ms`` of None disables the
    grace-period clear.
    """
    endpoint: str
    mode: DeliveryMode = DeliveryMode.STREAM
    poll_path: str = "/data"
    poll_interval_ms: int = 1000
    heartbeat_interval_ms: int = 5000
    liveness_timeout_ms: int = 15000
    flash_duration_ms: int = 600
    reconnect_delay_ms: int = 1000
    timeout_ms: int = 10000
    disconnect_policy: DisconnectPolicy = DisconnectPolicy.KEEP
    disconnect_grace_ms: Optional[int] = None
    headers: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        if not self.endpoint:
            raise ConfigurationError("Feed endpoint is required")
        try:
            object.__setattr__(self, "mode", DeliveryMode(self.mode))
            object.__setattr__(self, "disconnect_policy", DisconnectPolicy(self.disconnect_policy))
        except ValueError as e:
            raise ConfigurationError(str(e))

        for name in ("poll_interval_ms", "heartbeat_interval_ms", "flash_duration_ms", "timeout_ms"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive", details={name: getattr(self, name)})
        for name in ("reconnect_delay_ms", "liveness_timeout_ms"):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"{name} must not be negative", details={name: getattr(self, name)})
        if self.disconnect_grace_ms is not None and self.disconnect_grace_ms < 0:
            raise ConfigurationError("disconnect_grace_ms must not be negative")

        scheme = self.endpoint.split("://", 1)[0].lower()
        allowed = ("ws", "wss") if self.mode == DeliveryMode.STREAM else ("http", "https")
        if scheme not in allowed:
            raise ConfigurationError(
                f"Endpoint scheme '{scheme}' does not match mode '{self.mode.value}'",
                details={"endpoint": self.endpoint, "allowed": list(allowed)},
            )

    @property
    def poll_url(self) -> str:
        """Full URL polled in POLL mode."""
        if not self.poll_path:
            return self.endpoint
        return self.endpoint.rstrip("/") + "/" + self.poll_path.lstrip("/")


def load_feed_config(settings: Optional[Settings] = None) -> FeedConfig:
    """Build a FeedConfig from environment settings."""
    settings = settings or Settings()
    headers = {}
    if settings.SESSION_TOKEN:
        headers["Authorization"] = f"Bearer {settings.SESSION_TOKEN}"

    config = FeedConfig(
        endpoint=settings.ENDPOINT,
        mode=settings.MODE,
        poll_path=settings.POLL_PATH,
        poll_interval_ms=settings.POLL_INTERVAL_MS,
        heartbeat_interval_ms=settings.HEARTBEAT_INTERVAL_MS,
        liveness_timeout_ms=settings.LIVENESS_TIMEOUT_MS,
        flash_duration_ms=settings.FLASH_MS,
        reconnect_delay_ms=settings.RECONNECT_DELAY_MS,
        timeout_ms=settings.TIMEOUT_MS,
        disconnect_policy=settings.DISCONNECT_POLICY,
        disconnect_grace_ms=settings.DISCONNECT_GRACE_MS,
        headers=headers,
    )
    logger.info(f"Feed config loaded: mode={config.mode.value} endpoint={config.endpoint}")
    return config
