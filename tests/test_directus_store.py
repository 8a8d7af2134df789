from __future__ import annotations

import json

import httpx
import pytest

from botkb.directus import DirectusStore
from botkb.errors import NotFoundError, StoreError


def _make_store(handler) -> tuple[DirectusStore, list[httpx.Request]]:
    requests: list[httpx.Request] = []

    def recording(request: httpx.Request) -> httpx.Response:
        request.read()
        requests.append(request)
        return handler(request)

    store = DirectusStore(
        "https://cms.example.com/",
        token="secret",
        transport=httpx.MockTransport(recording),
    )
    return store, requests


def test_read_items_sends_equality_filter_and_token() -> None:
    store, requests = _make_store(
        lambda request: httpx.Response(200, json={"data": [{"id": 1, "llm_status": "ready"}]})
    )

    items = store.read_items("llm", filter={"llm_chatbot": "7", "llm_file": "f1"})

    assert items == [{"id": 1, "llm_status": "ready"}]
    request = requests[0]
    assert request.url.path == "/items/llm"
    assert request.headers["Authorization"] == "Bearer secret"
    assert request.url.params["limit"] == "-1"
    assert json.loads(request.url.params["filter"]) == {
        "_and": [{"llm_chatbot": {"_eq": "7"}}, {"llm_file": {"_eq": "f1"}}]
    }


def test_missing_records_are_not_errors() -> None:
    store, _ = _make_store(lambda request: httpx.Response(404, json={"errors": [{"message": "nope"}]}))

    assert store.read_item("chatbot", "9") is None
    assert store.delete_item("llm", "9") is False
    assert store.delete_file("f9") is False
    with pytest.raises(NotFoundError):
        store.update_item("chatbot", "9", {"chatbot_llm": 1})


def test_server_errors_wrap_cause() -> None:
    store, _ = _make_store(
        lambda request: httpx.Response(500, json={"errors": [{"message": "database offline"}]})
    )

    with pytest.raises(StoreError) as excinfo:
        store.list_files("folder-1")

    assert "database offline" in str(excinfo.value)
    assert isinstance(excinfo.value.__cause__, httpx.HTTPStatusError)


def test_transport_errors_wrap_cause() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    store, _ = _make_store(handler)

    with pytest.raises(StoreError) as excinfo:
        store.list_folders(name="llm")

    assert isinstance(excinfo.value.__cause__, httpx.ConnectError)


def test_upload_posts_multipart_with_folder() -> None:
    store, requests = _make_store(
        lambda request: httpx.Response(
            200,
            json={"data": {"id": "f1", "filename_download": "guide.pdf", "filesize": "3", "folder": "folder-1"}},
        )
    )

    record = store.upload_file("folder-1", "guide.pdf", b"pdf", "application/pdf")

    assert record["id"] == "f1"
    request = requests[0]
    assert request.method == "POST"
    assert request.url.path == "/files"
    assert request.headers["Content-Type"].startswith("multipart/form-data")
    body = request.content
    assert b'name="folder"' in body
    assert b"folder-1" in body
    assert b'filename="guide.pdf"' in body


def test_folder_queries_and_creation() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            payload = json.loads(request.content)
            return httpx.Response(200, json={"data": {"id": "new", **payload}})
        return httpx.Response(200, json={"data": [{"id": "child", "name": "acme", "parent": "root"}]})

    store, requests = _make_store(handler)

    folders = store.list_folders(name="acme", parent="root")
    created = store.create_folder("beta", "root")

    assert folders[0]["id"] == "child"
    assert json.loads(requests[0].url.params["filter"]) == {
        "_and": [{"name": {"_eq": "acme"}}, {"parent": {"_eq": "root"}}]
    }
    assert created == {"id": "new", "name": "beta", "parent": "root"}


def test_forbidden_delete_of_visible_item_is_an_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "DELETE":
            return httpx.Response(403, json={"errors": [{"message": "forbidden"}]})
        return httpx.Response(200, json={"data": {"id": "9"}})

    store, requests = _make_store(handler)

    with pytest.raises(StoreError, match="403"):
        store.delete_item("llm", "9")
    assert [request.method for request in requests] == ["DELETE", "GET"]


def test_forbidden_delete_of_invisible_item_counts_as_absent() -> None:
    store, requests = _make_store(lambda request: httpx.Response(403, json={"errors": [{"message": "forbidden"}]}))

    assert store.delete_file("f9") is False
    assert [(request.method, request.url.path) for request in requests] == [
        ("DELETE", "/files/f9"),
        ("GET", "/files/f9"),
    ]
