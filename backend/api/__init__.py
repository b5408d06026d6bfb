"""API module for HTTP routes.

This module exposes the FastAPI router for the forensics assistant backend.
"""

from api.routes import router

__all__ = ["router"]
