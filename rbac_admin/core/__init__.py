"""Core configuration, errors and the authorization engine."""
