# Engines Package
"""Threat classification and fusion."""
