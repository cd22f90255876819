"""Confirmation and event waiting services."""
