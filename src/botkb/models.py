"""Typed records for chatbots, source files, build jobs and account totals."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import PurePosixPath
from typing import Any, Iterable, Mapping

CHATBOT_COLLECTION = "chatbot"
JOB_COLLECTION = "llm"
PROFILE_COLLECTION = "profile"

DEFAULT_ROOT_FOLDER = "llm"


class BuildStatus(str, Enum):
    """Lifecycle of a build job as written by the tracker and the build worker."""

    IDLE = "idle"
    READY = "ready"
    START = "start"
    BUILDING = "building"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def in_flight(self) -> bool:
        return self in (BuildStatus.START, BuildStatus.BUILDING)

    @property
    def terminal(self) -> bool:
        return self in (BuildStatus.COMPLETED, BuildStatus.ERROR)

    @classmethod
    def parse(cls, value: Any) -> "BuildStatus":
        if isinstance(value, cls):
            return value
        text = str(value or "").strip().lower()
        if not text:
            return cls.IDLE
        try:
            return cls(text)
        except ValueError as exc:
            raise ValueError(f"Unknown build status '{value}'") from exc


def _as_int(value: Any) -> int:
    if value is None or value == "":
        return 0
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return 0


def _ref_id(value: Any) -> str | None:
    """Return the id of a relation that may be expanded to an object."""

    if value is None or value == "":
        return None
    if isinstance(value, Mapping):
        inner = value.get("id")
        return None if inner is None else str(inner)
    return str(value)


@dataclass(slots=True)
class FolderRef:
    """Opaque folder handle plus a human readable path."""

    id: str
    path: str


@dataclass(slots=True)
class Chatbot:
    id: str
    slug: str
    owner: str | None = None
    name: str | None = None
    folder: FolderRef | None = None
    file_count: int = 0
    storage_mb: int = 0
    message_count: int = 0

    @classmethod
    def from_record(cls, record: Mapping[str, Any], *, root_folder: str = DEFAULT_ROOT_FOLDER) -> "Chatbot":
        slug = str(record.get("chatbot_slug") or "")
        folder_id = _ref_id(record.get("chatbot_folder"))
        folder = FolderRef(id=folder_id, path=f"{root_folder}/{slug}") if folder_id else None
        return cls(
            id=str(record["id"]),
            slug=slug,
            owner=_ref_id(record.get("user_created")),
            name=record.get("chatbot_name"),
            folder=folder,
            file_count=_as_int(record.get("chatbot_llm")),
            storage_mb=_as_int(record.get("chatbot_storage")),
            message_count=_as_int(record.get("chatbot_messages")),
        )

    def counters(self) -> dict[str, int]:
        return {"chatbot_llm": self.file_count, "chatbot_storage": self.storage_mb}


@dataclass(slots=True)
class SourceFile:
    """A binary uploaded into a chatbot's storage folder."""

    id: str
    name: str
    size: int
    uploaded_on: str | None = None
    content_type: str | None = None
    folder_id: str | None = None

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "SourceFile":
        name = record.get("filename_download") or record.get("title") or str(record["id"])
        return cls(
            id=str(record["id"]),
            name=str(name),
            size=_as_int(record.get("filesize")),
            uploaded_on=record.get("uploaded_on"),
            content_type=record.get("type"),
            folder_id=_ref_id(record.get("folder")),
        )

    def has_suffix(self, suffixes: Iterable[str]) -> bool:
        suffix = PurePosixPath(self.name).suffix.lower()
        return bool(suffix) and suffix in {item.lower() for item in suffixes}


@dataclass(slots=True)
class BuildJob:
    id: str
    chatbot_id: str
    file_id: str
    status: BuildStatus = BuildStatus.READY
    error: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "BuildJob":
        file_id = _ref_id(record.get("llm_file"))
        if file_id is None:
            raise ValueError(f"Build job {record.get('id')} does not reference a file")
        return cls(
            id=str(record["id"]),
            chatbot_id=str(_ref_id(record.get("llm_chatbot")) or ""),
            file_id=file_id,
            status=BuildStatus.parse(record.get("llm_status")),
            error=record.get("llm_error") or None,
            updated_at=record.get("date_updated") or record.get("date_created"),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "chatbot_id": self.chatbot_id,
            "file_id": self.file_id,
            "status": self.status.value,
            "error": self.error,
            "updated_at": self.updated_at,
        }


@dataclass(slots=True)
class AccountProfile:
    """Per-account totals summed across every chatbot the account owns."""

    id: str
    owner: str | None
    chatbot_count: int = 0
    file_count: int = 0
    message_count: int = 0
    storage_mb: int = 0

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "AccountProfile":
        return cls(
            id=str(record["id"]),
            owner=_ref_id(record.get("user_created")),
            chatbot_count=_as_int(record.get("profile_chatbots")),
            file_count=_as_int(record.get("profile_llm")),
            message_count=_as_int(record.get("profile_messages")),
            storage_mb=_as_int(record.get("profile_storages")),
        )

    def totals(self) -> dict[str, int]:
        return {
            "profile_chatbots": self.chatbot_count,
            "profile_llm": self.file_count,
            "profile_messages": self.message_count,
            "profile_storages": self.storage_mb,
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner": self.owner,
            "chatbot_count": self.chatbot_count,
            "file_count": self.file_count,
            "message_count": self.message_count,
            "storage_mb": self.storage_mb,
        }


@dataclass(slots=True)
class TrackedFile:
    """A source file merged with the build job that references it, if any."""

    file: SourceFile
    job: BuildJob | None = None
    pending: bool = False

    @property
    def id(self) -> str:
        return self.file.id

    @property
    def status(self) -> BuildStatus:
        return self.job.status if self.job is not None else BuildStatus.IDLE

    @property
    def error(self) -> str | None:
        return self.job.error if self.job is not None else None

    def to_dict(self) -> dict:
        return {
            "id": self.file.id,
            "name": self.file.name,
            "size": self.file.size,
            "uploaded_on": self.file.uploaded_on,
            "type": self.file.content_type,
            "status": self.status.value,
            "error": self.error,
            "job_id": self.job.id if self.job is not None else None,
            "pending": self.pending,
        }


__all__ = [
    "CHATBOT_COLLECTION",
    "JOB_COLLECTION",
    "PROFILE_COLLECTION",
    "DEFAULT_ROOT_FOLDER",
    "BuildStatus",
    "FolderRef",
    "Chatbot",
    "SourceFile",
    "BuildJob",
    "AccountProfile",
    "TrackedFile",
]
