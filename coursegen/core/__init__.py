"""Settings, logging and worker context."""
