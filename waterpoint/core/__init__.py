"""Core module - configuration, errors, logging and shared clients."""
