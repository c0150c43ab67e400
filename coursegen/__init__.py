"""Job orchestration and idempotent artifact persistence for repository course generation."""

__version__ = "1.0.0"
