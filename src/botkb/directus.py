"""Item/file store backed by a Directus REST API."""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping

import httpx

from .errors import NotFoundError, StoreError
from .store import ItemStore

logger = logging.getLogger(__name__)

_MISSING_STATUSES = {403, 404}


class DirectusStore(ItemStore):
    """Talk to Directus ``/items``, ``/files`` and ``/folders`` endpoints.

    Every transport or HTTP failure is re-raised as :class:`StoreError` with the
    ``httpx`` exception chained. Directus answers 403 for records that do not
    exist when the token lacks visibility, so both 403 and 404 count as
    "missing" for reads. A 403 on delete is only "missing" when a follow-up
    read cannot see the item either.
    """

    def __init__(
        self,
        base_url: str,
        *,
        token: str | None = None,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._base_url = base_url.rstrip("/")
        self._client = httpx.Client(
            base_url=self._base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    # Records ------------------------------------------------------------------

    def create_item(self, collection: str, data: Mapping[str, Any]) -> dict[str, Any]:
        response = self._request("POST", f"/items/{collection}", json=dict(data))
        return self._data(response)

    def read_item(self, collection: str, item_id: str) -> dict[str, Any] | None:
        response = self._request("GET", f"/items/{collection}/{item_id}", allow_missing=True)
        if response is None:
            return None
        return self._data(response)

    def read_items(
        self,
        collection: str,
        *,
        filter: Mapping[str, Any] | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        params = self._query(filter, limit)
        response = self._request("GET", f"/items/{collection}", params=params)
        return list(self._data(response) or [])

    def update_item(self, collection: str, item_id: str, data: Mapping[str, Any]) -> dict[str, Any]:
        response = self._request("PATCH", f"/items/{collection}/{item_id}", json=dict(data), allow_missing=True)
        if response is None:
            raise NotFoundError(f"{collection} item {item_id} not found")
        return self._data(response)

    def delete_item(self, collection: str, item_id: str) -> bool:
        return self._delete(f"/items/{collection}/{item_id}")

    # Files --------------------------------------------------------------------

    def upload_file(
        self,
        folder_id: str,
        filename: str,
        data: bytes,
        content_type: str | None = None,
    ) -> dict[str, Any]:
        # Directus reads form fields in order; metadata must precede the file part.
        form = {"title": filename, "folder": folder_id}
        files = {"file": (filename, data, content_type or "application/octet-stream")}
        response = self._request("POST", "/files", data=form, files=files)
        return self._data(response)

    def list_files(self, folder_id: str) -> list[dict[str, Any]]:
        params = self._query({"folder": folder_id}, None)
        params["sort"] = "-uploaded_on"
        response = self._request("GET", "/files", params=params)
        return list(self._data(response) or [])

    def delete_file(self, file_id: str) -> bool:
        return self._delete(f"/files/{file_id}")

    # Folders ------------------------------------------------------------------

    def list_folders(self, *, name: str | None = None, parent: str | None = None) -> list[dict[str, Any]]:
        filter: dict[str, Any] = {}
        if name is not None:
            filter["name"] = name
        if parent is not None:
            filter["parent"] = parent
        response = self._request("GET", "/folders", params=self._query(filter, None))
        return list(self._data(response) or [])

    def create_folder(self, name: str, parent: str | None = None) -> dict[str, Any]:
        payload: dict[str, Any] = {"name": name}
        if parent is not None:
            payload["parent"] = parent
        response = self._request("POST", "/folders", json=payload)
        return self._data(response)

    # Helpers ------------------------------------------------------------------

    @staticmethod
    def _query(filter: Mapping[str, Any] | None, limit: int | None) -> dict[str, Any]:
        params: dict[str, Any] = {"limit": -1 if limit is None else limit}
        if filter:
            conditions = [{key: {"_eq": value}} for key, value in filter.items()]
            query = conditions[0] if len(conditions) == 1 else {"_and": conditions}
            params["filter"] = json.dumps(query)
        return params

    def _request(
        self,
        method: str,
        path: str,
        *,
        allow_missing: bool = False,
        **kwargs: Any,
    ) -> httpx.Response | None:
        response = self._send(method, path, **kwargs)
        if allow_missing and response.status_code in _MISSING_STATUSES:
            return None
        self._check(response, method, path)
        return response

    def _delete(self, path: str) -> bool:
        """Delete ``path``; a 403 only counts as absent when the item cannot be read either."""

        response = self._send("DELETE", path)
        if response.status_code == 404:
            return False
        if response.status_code == 403:
            if self._request("GET", path, allow_missing=True) is not None:
                logger.warning("directus.delete.forbidden path=%s", path)
                raise StoreError(f"Directus refused DELETE {path} (403) but the item is still readable")
            logger.info("directus.delete.forbidden_absent path=%s", path)
            return False
        self._check(response, "DELETE", path)
        return True

    def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            return self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("directus.request_failed method=%s path=%s error=%s", method, path, exc)
            raise StoreError(f"Directus {method} {path} failed: {exc}") from exc

    def _check(self, response: httpx.Response, method: str, path: str) -> None:
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            detail = self._error_detail(response)
            logger.warning(
                "directus.request_rejected method=%s path=%s status=%s detail=%s",
                method,
                path,
                response.status_code,
                detail,
            )
            raise StoreError(f"Directus {method} {path} returned {response.status_code}: {detail}") from exc

    @staticmethod
    def _data(response: httpx.Response) -> Any:
        if response.status_code == 204 or not response.content:
            return None
        try:
            payload = response.json()
        except ValueError as exc:
            raise StoreError("Directus returned a non-JSON response") from exc
        if isinstance(payload, Mapping):
            return payload.get("data")
        return payload

    @staticmethod
    def _error_detail(response: httpx.Response) -> str:
        try:
            payload = response.json()
        except ValueError:
            return response.text[:200]
        errors = payload.get("errors") if isinstance(payload, Mapping) else None
        if errors and isinstance(errors, list):
            messages = [str(item.get("message")) for item in errors if isinstance(item, Mapping)]
            if messages:
                return "; ".join(messages)
        return response.text[:200]


__all__ = ["DirectusStore"]
