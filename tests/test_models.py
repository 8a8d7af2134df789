from __future__ import annotations

import pytest

from botkb.models import BuildJob, BuildStatus, Chatbot, SourceFile, TrackedFile


def test_build_status_parse_treats_blank_as_idle() -> None:
    assert BuildStatus.parse(None) is BuildStatus.IDLE
    assert BuildStatus.parse("") is BuildStatus.IDLE
    assert BuildStatus.parse("Building") is BuildStatus.BUILDING
    assert BuildStatus.START.in_flight
    assert BuildStatus.ERROR.terminal and not BuildStatus.READY.terminal

    with pytest.raises(ValueError):
        BuildStatus.parse("archived")


def test_chatbot_from_record_reads_counters_and_expanded_folder() -> None:
    chatbot = Chatbot.from_record(
        {
            "id": 7,
            "chatbot_slug": "acme",
            "chatbot_folder": {"id": "folder-1", "name": "acme"},
            "chatbot_llm": "3",
            "chatbot_storage": 12,
            "chatbot_messages": None,
            "user_created": {"id": "user-1"},
        }
    )

    assert chatbot.id == "7"
    assert chatbot.owner == "user-1"
    assert chatbot.folder is not None
    assert chatbot.folder.id == "folder-1"
    assert chatbot.folder.path == "llm/acme"
    assert chatbot.counters() == {"chatbot_llm": 3, "chatbot_storage": 12}
    assert chatbot.message_count == 0


def test_build_job_requires_file_reference() -> None:
    job = BuildJob.from_record(
        {"id": "j1", "llm_chatbot": 4, "llm_file": {"id": "f1"}, "llm_status": "error", "llm_error": "boom"}
    )
    assert job.file_id == "f1"
    assert job.chatbot_id == "4"
    assert job.status is BuildStatus.ERROR
    assert job.error == "boom"

    with pytest.raises(ValueError):
        BuildJob.from_record({"id": "j2", "llm_chatbot": 4, "llm_status": "ready"})


def test_source_file_suffix_and_size_parsing() -> None:
    file = SourceFile.from_record({"id": "f1", "filename_download": "Prices.CSV", "filesize": "2048"})

    assert file.size == 2048
    assert file.has_suffix([".csv"])
    assert not file.has_suffix([".pdf"])


def test_tracked_file_without_job_is_idle() -> None:
    tracked = TrackedFile(file=SourceFile(id="f1", name="guide.pdf", size=10))

    assert tracked.status is BuildStatus.IDLE
    payload = tracked.to_dict()
    assert payload["status"] == "idle"
    assert payload["job_id"] is None
