from __future__ import annotations

import pytest

from botkb.errors import NotReadyError, StoreError
from botkb.models import JOB_COLLECTION, BuildStatus, Chatbot
from botkb.uploads import UploadCoordinator


def test_upload_requires_resolved_folder(store) -> None:
    coordinator = UploadCoordinator(store)

    with pytest.raises(NotReadyError):
        coordinator.upload(Chatbot(id="1", slug="acme"), filename="a.pdf", data=b"x")


def test_empty_upload_is_rejected(knowledge_base, chatbot) -> None:
    with pytest.raises(ValueError, match="empty"):
        knowledge_base.upload(chatbot.id, filename="a.pdf", data=b"")


def test_upload_without_bot_folder_is_not_ready(knowledge_base, store, profile) -> None:
    store.fail("create_folder", "beta")
    chatbot = knowledge_base.create_chatbot("user-1", "Beta", "beta")
    assert chatbot.folder is None

    with pytest.raises(NotReadyError):
        knowledge_base.upload(chatbot.id, filename="a.pdf", data=b"x")


def test_failed_job_write_removes_uploaded_file(knowledge_base, chatbot, store) -> None:
    view = knowledge_base.view(chatbot.id)
    store.fail("create_item", JOB_COLLECTION, StoreError("job insert rejected"))

    with pytest.raises(StoreError, match="job insert rejected"):
        knowledge_base.upload(chatbot.id, filename="guide.pdf", data=b"%PDF")

    assert store.list_files(chatbot.folder.id) == []
    assert store.read_items(JOB_COLLECTION) == []
    assert view.files() == []


def test_failed_binary_upload_drops_placeholder(knowledge_base, chatbot, store) -> None:
    view = knowledge_base.view(chatbot.id)
    store.fail("upload_file", "guide.pdf")

    with pytest.raises(StoreError):
        knowledge_base.upload(chatbot.id, filename="guide.pdf", data=b"%PDF")

    assert view.files() == []


def test_placeholder_shown_during_upload_then_replaced(knowledge_base, chatbot, store) -> None:
    view = knowledge_base.view(chatbot.id)
    seen: list[list[bool]] = []
    original = store.upload_file

    def observing_upload(folder_id, filename, data, content_type=None):
        seen.append([item.pending for item in view.files()])
        return original(folder_id, filename, data, content_type)

    store.upload_file = observing_upload

    file, job = knowledge_base.upload(chatbot.id, filename="guide.pdf", data=b"%PDF")

    assert seen == [[True]]
    files = view.files()
    assert [(item.id, item.pending, item.status) for item in files] == [(file.id, False, BuildStatus.READY)]
    assert files[0].job.id == job.id


def test_upload_guesses_content_type(knowledge_base, chatbot, store) -> None:
    file, _ = knowledge_base.upload(chatbot.id, filename="notes.txt", data=b"hello")

    assert file.content_type == "text/plain"
    assert file.size == 5
