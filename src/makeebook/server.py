from __future__ import annotations

import asyncio
import base64
import binascii
import dataclasses
import hmac
from functools import partial

from fastapi import Body, FastAPI, Header, HTTPException, Query
from fastapi.responses import JSONResponse

from .config import ServerConfig
from .cover import parse_data_url, process_cover
from .gateway import BookNotFoundError
from .library import BookRepository
from .logging_utils import debug_log
from .typography import auto_fix_chapter, auto_fix_chapters, check_typography

MAX_COVER_BYTES = 25 * 1024 * 1024


def _listing_payload(listing) -> dict[str, object]:
    payload = dataclasses.asdict(listing)
    payload["updated_at"] = payload.pop("modified")
    return payload


def _decode_cover_payload(payload: dict[str, object]) -> tuple[bytes, str | None]:
    filename = payload.get("filename")
    if filename is not None and not isinstance(filename, str):
        raise HTTPException(status_code=400, detail="filename must be a string.")
    data_url = payload.get("data_url")
    if isinstance(data_url, str):
        info = parse_data_url(data_url)
        if info is None:
            raise HTTPException(status_code=400, detail="data_url is not a base64 image.")
        return info.data, filename or f"cover.{info.ext}"
    data = payload.get("data")
    if not isinstance(data, str) or not data:
        raise HTTPException(status_code=400, detail="data or data_url is required.")
    try:
        raw = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise HTTPException(status_code=400, detail="data must be base64.") from exc
    return raw, filename


def create_app(config: ServerConfig) -> FastAPI:
    root = config.root.expanduser().resolve()
    root.mkdir(parents=True, exist_ok=True)

    app = FastAPI(title="makeebook")
    app.state.config = config
    app.state.root = root
    repository = BookRepository(root)
    app.state.repository = repository
    editor = config.editor

    def _authorize(authorization: str | None) -> None:
        token = config.api_token
        if not token:
            return
        if not isinstance(authorization, str):
            raise HTTPException(status_code=401, detail="Unauthorized")
        scheme, _, provided = authorization.partition(" ")
        if scheme.lower() != "bearer" or not hmac.compare_digest(
            provided.strip().encode(), token.encode()
        ):
            raise HTTPException(status_code=401, detail="Unauthorized")

    def _require_object(payload: object) -> dict[str, object]:
        if not isinstance(payload, dict):
            raise HTTPException(status_code=400, detail="Invalid payload.")
        return payload

    @app.get("/api/books")
    def api_books(
        sort: str = Query("recent"),
        authorization: str | None = Header(None),
    ) -> JSONResponse:
        _authorize(authorization)
        books = [_listing_payload(entry) for entry in repository.list(sort)]
        return JSONResponse({"books": books})

    @app.post("/api/books")
    def api_create_book(
        payload: dict[str, object] = Body(...),
        authorization: str | None = Header(None),
    ) -> JSONResponse:
        _authorize(authorization)
        body = _require_object(payload)
        try:
            row = repository.create(body)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        debug_log(f"Created book {row['id']}")
        return JSONResponse(row, status_code=201)

    @app.get("/api/books/{book_id}")
    def api_get_book(book_id: str, authorization: str | None = Header(None)) -> JSONResponse:
        _authorize(authorization)
        try:
            row = repository.get(book_id)
        except BookNotFoundError as exc:
            raise HTTPException(status_code=404, detail="Book not found") from exc
        return JSONResponse(row)

    @app.put("/api/books/{book_id}")
    def api_update_book(
        book_id: str,
        payload: dict[str, object] = Body(...),
        authorization: str | None = Header(None),
    ) -> JSONResponse:
        _authorize(authorization)
        body = _require_object(payload)
        try:
            row = repository.update(book_id, body)
        except BookNotFoundError as exc:
            raise HTTPException(status_code=404, detail="Book not found") from exc
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return JSONResponse(row)

    @app.delete("/api/books/{book_id}")
    def api_delete_book(book_id: str, authorization: str | None = Header(None)) -> JSONResponse:
        _authorize(authorization)
        try:
            repository.delete(book_id)
        except BookNotFoundError as exc:
            raise HTTPException(status_code=404, detail="Book not found") from exc
        debug_log(f"Deleted book {book_id}")
        return JSONResponse({"deleted": True, "book": book_id})

    @app.post("/api/books/{book_id}/duplicate")
    def api_duplicate_book(book_id: str, authorization: str | None = Header(None)) -> JSONResponse:
        _authorize(authorization)
        try:
            row = repository.duplicate(book_id)
        except BookNotFoundError as exc:
            raise HTTPException(status_code=404, detail="Book not found") from exc
        return JSONResponse(row, status_code=201)

    @app.post("/api/covers")
    async def api_process_cover(
        payload: dict[str, object] = Body(...),
        authorization: str | None = Header(None),
    ) -> JSONResponse:
        _authorize(authorization)
        raw, filename = _decode_cover_payload(_require_object(payload))
        if len(raw) > MAX_COVER_BYTES:
            raise HTTPException(status_code=413, detail="Cover image is too large.")
        loop = asyncio.get_running_loop()
        work = partial(
            process_cover,
            raw,
            filename=filename,
            max_width=editor.cover_max_width,
            max_height=editor.cover_max_height,
            quality=editor.cover_quality,
        )
        artifact = await loop.run_in_executor(None, work)
        return JSONResponse(
            {
                "data_url": artifact.data_url,
                "media_type": artifact.media_type,
                "width": artifact.width,
                "height": artifact.height,
                "compressed": artifact.compressed,
                "bytes": artifact.byte_length,
            }
        )

    @app.post("/api/typography/fix")
    def api_fix_typography(
        payload: dict[str, object] = Body(...),
        authorization: str | None = Header(None),
    ) -> JSONResponse:
        _authorize(authorization)
        body = _require_object(payload)
        chapters = body.get("chapters")
        if isinstance(chapters, list):
            if not all(isinstance(entry, dict) for entry in chapters):
                raise HTTPException(status_code=400, detail="chapters must be objects.")
            batch = auto_fix_chapters(chapters)
            return JSONResponse(
                {
                    "chapters": batch.chapters,
                    "total_changes": batch.total_changes,
                    "summary": [dataclasses.asdict(entry) for entry in batch.summary],
                }
            )
        content = body.get("content")
        if not isinstance(content, str):
            raise HTTPException(status_code=400, detail="content or chapters is required.")
        fix = auto_fix_chapter(content)
        return JSONResponse({"fixed": fix.fixed, "changes": fix.changes})

    @app.post("/api/typography/check")
    def api_check_typography(
        payload: dict[str, object] = Body(...),
        authorization: str | None = Header(None),
    ) -> JSONResponse:
        _authorize(authorization)
        content = _require_object(payload).get("content")
        if not isinstance(content, str):
            raise HTTPException(status_code=400, detail="content is required.")
        return JSONResponse({"issues": check_typography(content)})

    return app


__all__ = ["MAX_COVER_BYTES", "create_app"]
