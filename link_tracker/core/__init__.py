"""Core application utilities."""

from .config import Settings, get_settings
from .database import (
    async_session_factory,
    build_engine,
    close_db,
    engine,
    get_session,
    get_session_context,
    init_db,
)
from .dependencies import (
    CurrentUser,
    CurrentUserDep,
    SessionDep,
    get_current_user,
    require_capability,
)
from .policy import (
    Action,
    Actor,
    PermissionDeniedError,
    allowed_actions,
    can,
    ensure_allowed,
)
from .security import create_access_token, decode_token

__all__ = [
    # Config
    "Settings",
    "get_settings",
    # Database
    "engine",
    "build_engine",
    "async_session_factory",
    "get_session",
    "get_session_context",
    "init_db",
    "close_db",
    # Dependencies
    "CurrentUser",
    "get_current_user",
    "require_capability",
    "CurrentUserDep",
    "SessionDep",
    # Policy
    "Action",
    "Actor",
    "PermissionDeniedError",
    "can",
    "ensure_allowed",
    "allowed_actions",
    # Security
    "create_access_token",
    "decode_token",
]
