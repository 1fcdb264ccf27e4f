"""
Provisioning console configuration: all environment variables in one place.

Read from environment at import time.
"""

from __future__ import annotations

import os


class Settings:
    """Console settings from environment variables."""

    # Backend
    API_URL: str = os.environ.get("CVD_API_URL", "http://localhost:8080")
    ZONE: str = os.environ.get("CVD_ZONE", "us-central1-b")
    HTTP_TIMEOUT_SECONDS: float = float(os.environ.get("CVD_HTTP_TIMEOUT", "30"))

    # Wait polling
    POLL_INTERVAL_SECONDS: float = float(os.environ.get("CVD_POLL_INTERVAL", "2"))
    POLL_TIMEOUT_SECONDS: float = float(os.environ.get("CVD_POLL_TIMEOUT", "600"))

    # Logging
    LOG_LEVEL: str = os.environ.get("CVD_LOG_LEVEL", "WARNING").upper()

    # Host defaults
    DISK_SIZE_GB: int = 30
    MIN_CPU_PLATFORM: str = "Intel Haswell"

    # Build defaults
    BUILD_ID: str = os.environ.get("CVD_BUILD_ID", "8673413")
    TARGET: str = os.environ.get("CVD_TARGET", "aosp_cf_x86_64_phone-userdebug")

    def machine_type(self, zone: str | None = None) -> str:
        machine_type = os.environ.get("CVD_MACHINE_TYPE")
        if machine_type:
            return machine_type
        return f"zones/{zone or self.ZONE}/machineTypes/n1-standard-4"


# Singleton instance
settings = Settings()

if settings.POLL_INTERVAL_SECONDS <= 0:
    raise RuntimeError("CVD_POLL_INTERVAL must be positive")
if settings.POLL_TIMEOUT_SECONDS <= 0:
    raise RuntimeError("CVD_POLL_TIMEOUT must be positive")
