"""
API v1 package.

Contains versioned API routes for domain provisioning and lifecycle.
"""

from src.api.v1.routes import router

__all__ = ["router"]
