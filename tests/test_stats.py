from __future__ import annotations

from botkb.models import CHATBOT_COLLECTION, PROFILE_COLLECTION
from botkb.stats import bytes_to_megabytes


def test_bytes_to_megabytes_rounds_up() -> None:
    assert bytes_to_megabytes(0) == 0
    assert bytes_to_megabytes(1) == 1
    assert bytes_to_megabytes(1024 * 1024) == 1
    assert bytes_to_megabytes(1024 * 1024 + 1) == 2


def test_reconcile_writes_only_on_drift(knowledge_base, chatbot, store) -> None:
    store.upload_file(chatbot.folder.id, "a.txt", b"x" * 10)
    store.upload_file(chatbot.folder.id, "b.txt", b"y" * (1024 * 1024))

    updated = knowledge_base.reconcile(chatbot.id)
    assert (updated.file_count, updated.storage_mb) == (2, 2)

    store.calls.clear()
    again = knowledge_base.reconcile(chatbot.id)

    assert (again.file_count, again.storage_mb) == (2, 2)
    assert store.writes(CHATBOT_COLLECTION) == []
    assert store.writes(PROFILE_COLLECTION) == []


def test_reconcile_recomputes_instead_of_incrementing(knowledge_base, chatbot, store) -> None:
    store.upload_file(chatbot.folder.id, "a.txt", b"x")
    store.update_item(CHATBOT_COLLECTION, chatbot.id, {"chatbot_llm": 40, "chatbot_storage": 99})

    updated = knowledge_base.reconcile(chatbot.id)

    record = store.read_item(CHATBOT_COLLECTION, chatbot.id)
    assert (updated.file_count, updated.storage_mb) == (1, 1)
    assert (record["chatbot_llm"], record["chatbot_storage"]) == (1, 1)


def test_account_totals_sum_owned_chatbots(knowledge_base, chatbot, store, profile) -> None:
    other = knowledge_base.create_chatbot("user-1", "Second", "second")
    store.create_item(CHATBOT_COLLECTION, {"chatbot_slug": "foreign", "user_created": "user-2", "chatbot_llm": 9})
    store.update_item(CHATBOT_COLLECTION, chatbot.id, {"chatbot_messages": 5})
    store.update_item(CHATBOT_COLLECTION, other.id, {"chatbot_messages": 7})

    knowledge_base.upload(chatbot.id, filename="a.pdf", data=b"x" * 100)
    knowledge_base.upload(other.id, filename="b.pdf", data=b"y" * 100)
    knowledge_base.upload(other.id, filename="c.pdf", data=b"z" * 100)

    result = knowledge_base.reconcile_account("user-1")

    assert result is not None
    assert result.chatbot_count == 2
    assert result.file_count == 3
    assert result.storage_mb == 2
    assert result.message_count == 12
    stored = store.read_item(PROFILE_COLLECTION, profile["id"])
    assert stored["profile_llm"] == 3
    assert stored["profile_chatbots"] == 2


def test_account_reconcile_without_profile_returns_none(knowledge_base, store) -> None:
    store.create_item(CHATBOT_COLLECTION, {"chatbot_slug": "solo", "user_created": "user-9"})

    assert knowledge_base.reconcile_account("user-9") is None


def test_profile_not_rewritten_when_totals_match(knowledge_base, chatbot, store) -> None:
    knowledge_base.reconcile_account("user-1")
    store.calls.clear()

    knowledge_base.reconcile_account("user-1")

    assert store.writes(PROFILE_COLLECTION) == []
