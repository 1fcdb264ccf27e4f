"""CVD provisioning console: orchestration core for host and device provisioning."""

__version__ = "0.1.0"
