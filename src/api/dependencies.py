"""
FastAPI Dependencies for the Relay Gateway

Provides dependency injection for:
- AppContext (built by the lifespan handler, stored on app.state)
- Image relay service
- Upload limits from settings
"""

from fastapi import Depends, Request

from src.core.config import Settings
from src.core.context import AppContext
from src.engines.relay.services import ImageRelayService


def get_context(request: Request) -> AppContext:
    """Returns the process context created at startup."""
    return request.app.state.context


def get_settings(context: AppContext = Depends(get_context)) -> Settings:
    """Returns the settings the context was built with."""
    return context.settings


def get_relay_service(context: AppContext = Depends(get_context)) -> ImageRelayService:
    """Returns the shared relay service."""
    return context.relay_service
