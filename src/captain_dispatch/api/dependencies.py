"""FastAPI dependency injection providers."""

from typing import Annotated, Any

from fastapi import Depends, Request


def get_service(request: Request) -> Any:
    """Retrieve DispatchService from app state."""
    return request.app.state.service


def get_settings_dep(request: Request) -> Any:
    """Retrieve Settings from app state."""
    return request.app.state.settings


ServiceDep = Annotated[Any, Depends(get_service)]
SettingsDep = Annotated[Any, Depends(get_settings_dep)]
