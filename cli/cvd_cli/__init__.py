"""Terminal view layer for the CVD provisioning console."""

__version__ = "0.1.0"
