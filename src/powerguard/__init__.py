"""Policy enforcement engine for monitored smart outlets."""

__version__ = "0.1.0"
