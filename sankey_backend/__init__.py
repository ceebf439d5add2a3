"""Sankey Studio Backend - FastAPI application and WebSocket broadcasting."""

from .main import create_app

__all__ = ["create_app"]
