# Core Package
"""Shared error taxonomy for the session core."""
