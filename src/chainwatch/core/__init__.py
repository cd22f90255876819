"""Configuration, errors and shared wait utilities."""
