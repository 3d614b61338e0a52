"""Multi-agent task manager: dependency-aware task assignment and recommendations."""

__version__ = "0.1.0"
