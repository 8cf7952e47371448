from __future__ import annotations

import asyncio
import base64
import json
from io import BytesIO
from pathlib import Path

import pytest

pytest.importorskip("fastapi")
from fastapi import HTTPException

from makeebook.config import EditorConfig, ServerConfig
from makeebook.server import create_app


def _find_route(app, path: str, method: str):
    method = method.upper()
    for route in app.router.routes:
        if getattr(route, "path", None) == path and method in getattr(route, "methods", set()):
            return route.endpoint
    raise RuntimeError(f"Route {method} {path} not found")


def _body(response) -> object:
    return json.loads(response.body)


def test_book_crud_round_trip(tmp_path: Path) -> None:
    app = create_app(ServerConfig(root=tmp_path / "books"))
    create = _find_route(app, "/api/books", "POST")
    get = _find_route(app, "/api/books/{book_id}", "GET")
    put = _find_route(app, "/api/books/{book_id}", "PUT")
    delete = _find_route(app, "/api/books/{book_id}", "DELETE")
    listing = _find_route(app, "/api/books", "GET")
    duplicate = _find_route(app, "/api/books/{book_id}/duplicate", "POST")

    response = create(payload={"title": "Dune", "chapters": [{"title": "One"}]}, authorization=None)
    assert response.status_code == 201
    book_id = _body(response)["id"]

    response = put(book_id, payload={"author": "Frank Herbert"}, authorization=None)
    assert _body(response)["author"] == "Frank Herbert"
    assert _body(get(book_id, authorization=None))["title"] == "Dune"

    response = duplicate(book_id, authorization=None)
    assert response.status_code == 201
    copy_id = _body(response)["id"]
    assert _body(response)["title"] == "Dune (Copy)"

    books = _body(listing(sort="title", authorization=None))["books"]
    assert {entry["id"] for entry in books} == {book_id, copy_id}
    assert all("updated_at" in entry for entry in books)

    response = delete(book_id, authorization=None)
    assert _body(response) == {"deleted": True, "book": book_id}
    with pytest.raises(HTTPException) as excinfo:
        get(book_id, authorization=None)
    assert excinfo.value.status_code == 404


def test_unknown_ids_return_404(tmp_path: Path) -> None:
    app = create_app(ServerConfig(root=tmp_path))
    for path, method, kwargs in [
        ("/api/books/{book_id}", "GET", {}),
        ("/api/books/{book_id}", "PUT", {"payload": {"title": "x"}}),
        ("/api/books/{book_id}", "DELETE", {}),
        ("/api/books/{book_id}/duplicate", "POST", {}),
    ]:
        route = _find_route(app, path, method)
        with pytest.raises(HTTPException) as excinfo:
            route("missing", authorization=None, **kwargs)
        assert excinfo.value.status_code == 404


def test_invalid_payload_returns_400(tmp_path: Path) -> None:
    app = create_app(ServerConfig(root=tmp_path))
    create = _find_route(app, "/api/books", "POST")
    with pytest.raises(HTTPException) as excinfo:
        create(payload=["not", "an", "object"], authorization=None)
    assert excinfo.value.status_code == 400


def test_token_is_enforced(tmp_path: Path) -> None:
    app = create_app(ServerConfig(root=tmp_path, api_token="s3cret"))
    listing = _find_route(app, "/api/books", "GET")
    for header in (None, "Bearer wrong", "s3cret", "Basic s3cret"):
        with pytest.raises(HTTPException) as excinfo:
            listing(sort="recent", authorization=header)
        assert excinfo.value.status_code == 401
    response = listing(sort="recent", authorization="Bearer s3cret")
    assert _body(response) == {"books": []}


def test_typography_routes(tmp_path: Path) -> None:
    app = create_app(ServerConfig(root=tmp_path))
    fix = _find_route(app, "/api/typography/fix", "POST")
    check = _find_route(app, "/api/typography/check", "POST")

    body = _body(fix(payload={"content": "<p>Wait--what</p>"}, authorization=None))
    assert body["fixed"] == "<p>Wait—what</p>"
    assert body["changes"] == ["Converted double hyphens to em-dashes"]

    chapters = [{"id": "1", "content": "<p>ok</p>"}, {"id": "2", "content": "<p>a...</p>"}]
    body = _body(fix(payload={"chapters": chapters}, authorization=None))
    assert body["total_changes"] == 1
    assert body["summary"] == [
        {"chapter_index": 1, "changes": ["Converted three dots to ellipsis character"]}
    ]
    assert body["chapters"][1] == {"id": "2", "content": "<p>a…</p>"}

    body = _body(check(payload={"content": "<p>a  b</p>"}, authorization=None))
    assert body == {"issues": ["Removed extra spaces"]}

    with pytest.raises(HTTPException) as excinfo:
        fix(payload={"nothing": True}, authorization=None)
    assert excinfo.value.status_code == 400


def test_cover_route_compresses_and_falls_back(tmp_path: Path) -> None:
    pytest.importorskip("PIL")
    from PIL import Image

    editor = EditorConfig(cover_max_width=100, cover_max_height=100)
    app = create_app(ServerConfig(root=tmp_path, editor=editor))
    cover = _find_route(app, "/api/covers", "POST")

    with BytesIO() as buffer:
        Image.new("RGB", (400, 200), (10, 20, 30)).save(buffer, format="PNG")
        raw = buffer.getvalue()
    encoded = base64.b64encode(raw).decode("ascii")

    body = _body(asyncio.run(cover(payload={"data": encoded, "filename": "c.png"}, authorization=None)))
    assert body["compressed"] is True
    assert (body["width"], body["height"]) == (100, 50)
    assert body["data_url"].startswith("data:image/jpeg;base64,")

    body = _body(
        asyncio.run(cover(payload={"data_url": f"data:image/png;base64,{encoded}"}, authorization=None))
    )
    assert body["width"] == 100

    junk = base64.b64encode(b"junk").decode("ascii")
    body = _body(asyncio.run(cover(payload={"data": junk, "filename": "c.gif"}, authorization=None)))
    assert body["compressed"] is False
    assert body["media_type"] == "image/gif"

    with pytest.raises(HTTPException) as excinfo:
        asyncio.run(cover(payload={"data": "***"}, authorization=None))
    assert excinfo.value.status_code == 400
