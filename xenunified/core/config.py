"""
Driver Settings
================

Startup configuration for the unified driver, loaded from the environment
(prefix ``XEN_UNIFIED_``) or passed explicitly.

The settings object is handed to the driver and the lifecycle orchestrator
at construction time. Nothing in the package reads process-wide mutable
state after startup; the privilege flag in particular lives here and is
never changed per connection.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from xenunified.core import hal

class DriverSettings(BaseSettings):
    """Unified driver settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_prefix="XEN_UNIFIED_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # Privileged management process (the only kind this driver serves)
    privileged: bool = False

    # Persistent state
    save_dir: Path = Path("/var/lib/libvirt/xen/save")
    xend_domains_dir: Path = Path("/var/lib/xend/domains")

    # Host probing
    hypervisor_markers: tuple[Path, ...] = (
        Path("/proc/xen"),
        Path("/dev/xen/domcaps"),
    )
    xend_binary: Path = Path("/usr/sbin/xend")
    xend_probe_timeout_s: float = Field(default=10.0, gt=0)

    # Compiled-in alternatives / optional features
    libxl_available: bool = False
    inotify_enabled: bool = False

    # Telemetry
    log_level: str = "INFO"
    json_logs: bool = False
    log_dir: Path | None = None

    @classmethod
    def for_host(cls, **overrides: object) -> DriverSettings:
        """Build settings with ``privileged`` detected from the running process."""
        overrides.setdefault("privileged", hal.is_privileged())
        return cls(**overrides)

@lru_cache
def get_settings() -> DriverSettings:
    """Get cached settings instance for the current process."""
    return DriverSettings.for_host()
