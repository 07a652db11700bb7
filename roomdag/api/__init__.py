"""
HTTP layer over the observation registry.

Usage:
    uvicorn roomdag.api.server:app
"""

from .config import ServerConfig

__all__ = ['ServerConfig']
