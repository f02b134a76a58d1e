"""Runtime configuration for the SCORM-LTI proxy.

Values come from environment variables (with development defaults) and are
collected into an immutable :class:`RuntimeSettings` snapshot. The snapshot in
use is held by a :class:`SettingsStore`; editing a live setting builds a new
snapshot and swaps the reference, so a request that already obtained a
snapshot through :func:`get_settings` keeps seeing consistent values.
"""
from __future__ import annotations
import os
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

# Keys persisted in the ``settings`` table and editable at runtime
LIVE_SETTING_KEYS = ("base_url", "xapi_endpoint", "xapi_key", "xapi_secret")


class RuntimeSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    base_url: str = Field("http://localhost:8000")
    xapi_endpoint: str = ""
    xapi_key: str = ""
    xapi_secret: str = ""
    content_dir: str = "content"
    upload_dir: str = "uploads"
    upload_max_bytes: int = 100 * 1024 * 1024
    outbound_timeout: float = 10.0
    admin_username: str = "admin"
    admin_password: str = "admin123"
    environment: str = "development"

    @property
    def launch_url(self) -> str:
        """Absolute LTI launch URL the consumers sign against."""
        return f"{self.base_url}/lti/launch"

    def with_updates(self, **changes) -> "RuntimeSettings":
        changes = {k: v for k, v in changes.items() if v is not None}
        if "base_url" in changes:
            changes["base_url"] = changes["base_url"].rstrip("/")
        return self.model_copy(update=changes)

    def live_values(self) -> Dict[str, str]:
        return {key: getattr(self, key) for key in LIVE_SETTING_KEYS}


def load_settings_from_env() -> RuntimeSettings:
    return RuntimeSettings(
        base_url=os.getenv("BASE_URL", "http://localhost:8000").rstrip("/"),
        xapi_endpoint=os.getenv("XAPI_LRS_ENDPOINT", ""),
        xapi_key=os.getenv("XAPI_LRS_KEY", ""),
        xapi_secret=os.getenv("XAPI_LRS_SECRET", ""),
        content_dir=os.getenv("CONTENT_DIR", "content"),
        upload_dir=os.getenv("UPLOAD_DIR", "uploads"),
        upload_max_bytes=int(
            os.getenv("UPLOAD_MAX_BYTES", str(100 * 1024 * 1024))
        ),
        outbound_timeout=float(os.getenv("OUTBOUND_TIMEOUT_SECONDS", "10")),
        admin_username=os.getenv("ADMIN_USERNAME", "admin"),
        admin_password=os.getenv("ADMIN_PASSWORD", "admin123"),
        environment=os.getenv("ENVIRONMENT", "development"),
    )


class SettingsStore:
    """Holds the current settings snapshot and swaps it as a whole."""

    def __init__(self, initial: RuntimeSettings):
        self._current = initial

    @property
    def current(self) -> RuntimeSettings:
        return self._current

    def swap(self, snapshot: RuntimeSettings) -> RuntimeSettings:
        previous = self._current
        self._current = snapshot
        return previous

    def update(self, values: Optional[Dict[str, str]] = None, **changes) -> RuntimeSettings:
        merged = dict(values or {})
        merged.update(changes)
        unknown = set(merged) - set(LIVE_SETTING_KEYS)
        if unknown:
            raise KeyError(f"Not a live setting: {', '.join(sorted(unknown))}")
        snapshot = self._current.with_updates(**merged)
        self.swap(snapshot)
        return snapshot


settings_store = SettingsStore(load_settings_from_env())


def get_settings() -> RuntimeSettings:
    """FastAPI dependency returning the snapshot current at request start."""
    return settings_store.current
