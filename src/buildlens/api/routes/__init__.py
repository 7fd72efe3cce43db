"""
API routes for BuildLens.
"""

from buildlens.api.routes import dashboard

__all__ = ["dashboard"]
