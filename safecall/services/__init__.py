# Services Package
"""Collaborator interfaces and their offline stand-ins."""
