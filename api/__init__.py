"""
FastAPI REST endpoint for trade studies.

Provides programmatic access to study generation, the goal orchestrators,
and the tool catalog.
"""
