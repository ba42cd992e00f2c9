"""
SubHub - subscription management platform.

Plan catalog, subscription lifecycle, audit trail and admin reporting
served as a FastAPI application.
"""

__version__ = "1.0.0"

__all__ = ["__version__"]
