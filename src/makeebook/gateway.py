from __future__ import annotations

import asyncio
import copy
import json
import threading
import time
from functools import partial
from typing import Any, Mapping, Protocol

import requests

from .config import EditorConfig
from .errors import MakeEbookError
from .logging_utils import debug_log
from .models import new_id

BookPayload = dict[str, Any]


class PersistenceError(MakeEbookError):
    """A remote store call failed."""


class UnauthorizedError(PersistenceError):
    pass


class BookNotFoundError(PersistenceError):
    def __init__(self, book_id: str) -> None:
        super().__init__(f"Book not found: {book_id}")
        self.book_id = book_id


class PersistenceGateway(Protocol):
    async def create(self, payload: Mapping[str, Any]) -> str: ...

    async def update(self, book_id: str, payload: Mapping[str, Any]) -> None: ...

    async def fetch(self, book_id: str) -> BookPayload: ...

    async def delete(self, book_id: str) -> None: ...

    async def duplicate(self, book_id: str) -> BookPayload: ...

    async def list_books(self) -> list[BookPayload]: ...


def copy_title(title: str) -> str:
    return f"{title} (Copy)" if title else "Untitled (Copy)"


class InMemoryGateway:
    """Process-local gateway, mostly useful for tests and offline editing."""

    def __init__(self) -> None:
        self._rows: dict[str, BookPayload] = {}
        self._lock = threading.Lock()
        self.calls: list[tuple[str, str | None]] = []

    def _get(self, book_id: str) -> BookPayload:
        row = self._rows.get(book_id)
        if row is None:
            raise BookNotFoundError(book_id)
        return row

    async def create(self, payload: Mapping[str, Any]) -> str:
        book_id = new_id()
        row = copy.deepcopy(dict(payload))
        row["id"] = book_id
        row["updated_at"] = time.time()
        with self._lock:
            self._rows[book_id] = row
            self.calls.append(("create", book_id))
        return book_id

    async def update(self, book_id: str, payload: Mapping[str, Any]) -> None:
        with self._lock:
            row = self._get(book_id)
            for key, value in payload.items():
                if key == "id":
                    continue
                row[key] = copy.deepcopy(value)
            row["updated_at"] = time.time()
            self.calls.append(("update", book_id))

    async def fetch(self, book_id: str) -> BookPayload:
        with self._lock:
            self.calls.append(("fetch", book_id))
            return copy.deepcopy(self._get(book_id))

    async def delete(self, book_id: str) -> None:
        with self._lock:
            self._get(book_id)
            del self._rows[book_id]
            self.calls.append(("delete", book_id))

    async def duplicate(self, book_id: str) -> BookPayload:
        with self._lock:
            source = self._get(book_id)
            row = copy.deepcopy(source)
            row["id"] = new_id()
            row["title"] = copy_title(str(source.get("title") or ""))
            row["updated_at"] = time.time()
            self._rows[row["id"]] = row
            self.calls.append(("duplicate", book_id))
            return copy.deepcopy(row)

    async def list_books(self) -> list[BookPayload]:
        with self._lock:
            rows = [copy.deepcopy(row) for row in self._rows.values()]
        rows.sort(key=lambda row: -(row.get("updated_at") or 0.0))
        return rows


class HttpGateway:
    """Talks to a ``makeebook serve`` instance (or anything with the same routes).

    ``requests`` is blocking, so each call runs in the loop's default
    executor.
    """

    def __init__(
        self,
        base_url: str,
        *,
        token: str | None = None,
        timeout: float = 30.0,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()
        if token:
            self._session.headers["Authorization"] = f"Bearer {token}"

    def close(self) -> None:
        self._session.close()

    def _request(
        self,
        method: str,
        path: str,
        *,
        book_id: str | None = None,
        payload: Mapping[str, Any] | None = None,
    ) -> Any:
        url = f"{self.base_url}{path}"
        debug_log(f"{method} {url}")
        try:
            resp = self._session.request(
                method,
                url,
                json=dict(payload) if payload is not None else None,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise PersistenceError(f"Failed to contact book service at {self.base_url}") from exc

        if resp.status_code == 401:
            raise UnauthorizedError("Unauthorized")
        if resp.status_code == 404 and book_id is not None:
            raise BookNotFoundError(book_id)
        if not 200 <= resp.status_code < 300:
            raise PersistenceError(
                f"{method} {path} failed with status {resp.status_code}: {resp.text}"
            )
        if not resp.content:
            return None
        try:
            return resp.json()
        except json.JSONDecodeError as exc:
            raise PersistenceError(f"Book service returned invalid JSON for {path}") from exc

    async def _call(self, method: str, path: str, **kwargs: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(self._request, method, path, **kwargs))

    async def create(self, payload: Mapping[str, Any]) -> str:
        body = await self._call("POST", "/api/books", payload=payload)
        book_id = body.get("id") if isinstance(body, dict) else None
        if not isinstance(book_id, str) or not book_id:
            raise PersistenceError("Book service did not return an id for the new book")
        return book_id

    async def update(self, book_id: str, payload: Mapping[str, Any]) -> None:
        await self._call("PUT", f"/api/books/{book_id}", book_id=book_id, payload=payload)

    async def fetch(self, book_id: str) -> BookPayload:
        body = await self._call("GET", f"/api/books/{book_id}", book_id=book_id)
        if not isinstance(body, dict):
            raise PersistenceError(f"Unexpected payload for book {book_id}")
        return body

    async def delete(self, book_id: str) -> None:
        await self._call("DELETE", f"/api/books/{book_id}", book_id=book_id)

    async def duplicate(self, book_id: str) -> BookPayload:
        body = await self._call("POST", f"/api/books/{book_id}/duplicate", book_id=book_id)
        if not isinstance(body, dict):
            raise PersistenceError(f"Unexpected payload duplicating book {book_id}")
        return body

    async def list_books(self) -> list[BookPayload]:
        body = await self._call("GET", "/api/books")
        books = body.get("books") if isinstance(body, dict) else None
        if not isinstance(books, list):
            return []
        return [entry for entry in books if isinstance(entry, dict)]


def gateway_from_config(config: EditorConfig) -> PersistenceGateway:
    """HTTP gateway when a service URL is configured, otherwise in-memory."""
    if config.gateway_url:
        return HttpGateway(config.gateway_url, token=config.gateway_token)
    return InMemoryGateway()


__all__ = [
    "BookNotFoundError",
    "BookPayload",
    "HttpGateway",
    "InMemoryGateway",
    "PersistenceError",
    "PersistenceGateway",
    "UnauthorizedError",
    "copy_title",
    "gateway_from_config",
]
