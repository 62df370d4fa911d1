"""
Backend package for the social API.

This package provides a FastAPI application for user profiles, follow
relationships and notifications, with storage, database and identity
provider abstractions so local runs and tests need no external services.
"""
