from __future__ import annotations

import pytest

from botkb.errors import ConfigError, NotFoundError
from botkb.models import CHATBOT_COLLECTION, PROFILE_COLLECTION


def test_create_chatbot_provisions_folder_with_zero_counters(knowledge_base, store, profile) -> None:
    chatbot = knowledge_base.create_chatbot("user-1", "Acme Support", "acme", business="Retail")

    record = store.read_item(CHATBOT_COLLECTION, chatbot.id)
    assert record["chabot_title"] == "AI Assistant for Acme Support"
    assert record["chatbot_active"] is False
    assert record["status"] == "published"
    assert (record["chatbot_llm"], record["chatbot_storage"], record["chatbot_messages"]) == (0, 0, 0)
    assert chatbot.folder is not None
    assert chatbot.folder.path == "llm/acme"
    assert record["chatbot_folder"] == chatbot.folder.id
    assert store.read_item(PROFILE_COLLECTION, profile["id"])["profile_chatbots"] == 1


def test_provision_reuses_existing_folder(knowledge_base, store, profile) -> None:
    root = store.list_folders(name="llm")[0]
    existing = store.create_folder("acme", root["id"])

    chatbot = knowledge_base.create_chatbot("user-1", "Acme", "acme")

    assert chatbot.folder.id == existing["id"]
    assert len(store.list_folders(name="acme")) == 1


def test_create_without_root_folder_leaves_chatbot_unprovisioned(tmp_path, profile) -> None:
    from botkb.service import KnowledgeBase
    from botkb.store import LocalItemStore

    bare = LocalItemStore(tmp_path / "bare")
    knowledge_base = KnowledgeBase(bare)

    chatbot = knowledge_base.create_chatbot("user-1", "Acme", "acme")

    assert chatbot.folder is None
    assert bare.read_item(CHATBOT_COLLECTION, chatbot.id)["chatbot_slug"] == "acme"
    with pytest.raises(NotFoundError, match="Root 'llm' folder not found"):
        knowledge_base.resolver.resolve(chatbot)


@pytest.mark.parametrize("slug", ["", "Acme", "acme bot", "-acme", "acme/../x"])
def test_invalid_slug_is_rejected(knowledge_base, slug) -> None:
    with pytest.raises(ConfigError):
        knowledge_base.create_chatbot("user-1", "Acme", slug)


def test_blank_name_is_rejected(knowledge_base) -> None:
    with pytest.raises(ConfigError, match="name"):
        knowledge_base.create_chatbot("user-1", "   ", "acme")


def test_list_chatbots_filters_by_owner(knowledge_base, profile) -> None:
    first = knowledge_base.create_chatbot("user-1", "One", "one")
    knowledge_base.create_chatbot("user-2", "Two", "two")

    owned = knowledge_base.chatbots.list_chatbots("user-1")

    assert [bot.id for bot in owned] == [first.id]
    assert len(knowledge_base.chatbots.list_chatbots()) == 2


def test_unknown_chatbot_raises_not_found(knowledge_base) -> None:
    with pytest.raises(NotFoundError):
        knowledge_base.chatbot("missing")
