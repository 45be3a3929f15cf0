"""Core configuration, logging and task queue setup."""
