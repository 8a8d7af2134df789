"""Chatbot knowledge base: uploads, build jobs and usage statistics."""

from __future__ import annotations

from .config import Settings
from .errors import (
    ConfigError,
    ConflictError,
    KnowledgeBaseError,
    NotFoundError,
    NotReadyError,
    PurgeError,
    StoreError,
)
from .models import BuildStatus

__all__ = [
    "Settings",
    "BuildStatus",
    "KnowledgeBaseError",
    "ConfigError",
    "ConflictError",
    "NotFoundError",
    "NotReadyError",
    "PurgeError",
    "StoreError",
    "KnowledgeBase",
    "create_app",
]


def __getattr__(name: str):  # pragma: no cover - small helper
    if name == "KnowledgeBase":
        from .service import KnowledgeBase

        return KnowledgeBase
    if name == "create_app":
        from .app import create_app

        return create_app
    raise AttributeError(f"module 'botkb' has no attribute {name}")
