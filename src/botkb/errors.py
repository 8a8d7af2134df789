"""Exception types raised by the knowledge base core."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence


class KnowledgeBaseError(Exception):
    """Base class for every failure surfaced by the knowledge base core."""


class ConfigError(KnowledgeBaseError):
    """A chatbot or the runtime configuration is missing a required value."""


class NotFoundError(KnowledgeBaseError):
    """A folder, record or file the operation depends on does not exist."""


class NotReadyError(KnowledgeBaseError):
    """The operation needs a resolved storage folder that is not available yet."""


class StoreError(KnowledgeBaseError):
    """The item/file store failed; the original exception is chained as ``__cause__``."""


class ConflictError(KnowledgeBaseError):
    """The requested transition is not allowed from the job's current status."""


@dataclass(slots=True)
class DeleteFailure:
    kind: str
    item_id: str
    error: str

    def to_dict(self) -> dict:
        return {"kind": self.kind, "id": self.item_id, "error": self.error}


class PurgeError(KnowledgeBaseError):
    """Some deletes of a purge failed after every item was attempted."""

    def __init__(self, chatbot_id: str, failures: Sequence[DeleteFailure]) -> None:
        self.chatbot_id = chatbot_id
        self.failures = list(failures)
        kinds = ", ".join(f"{failure.kind} {failure.item_id}" for failure in self.failures[:5])
        extra = len(self.failures) - 5
        if extra > 0:
            kinds = f"{kinds} (+{extra} more)"
        super().__init__(f"Purge of chatbot {chatbot_id} left {len(self.failures)} item(s): {kinds}")


__all__ = [
    "KnowledgeBaseError",
    "ConfigError",
    "NotFoundError",
    "NotReadyError",
    "StoreError",
    "ConflictError",
    "DeleteFailure",
    "PurgeError",
]
