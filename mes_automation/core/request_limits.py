"""Request size limits for JSON bodies."""

from __future__ import annotations

import os

from fastapi import HTTPException, Request


def max_json_body_bytes() -> int:
    raw = os.getenv("MAX_JSON_BODY_BYTES", "1048576")
    try:
        val = int(raw)
    except Exception:
        val = 1048576
    return max(val, 1024)


def _content_length_too_large(request: Request, max_bytes: int) -> bool:
    length = request.headers.get("content-length")
    if not length:
        return False
    try:
        return int(length) > max_bytes
    except Exception:
        return False


async def read_limited_body(request: Request) -> bytes:
    """Read the raw body, rejecting anything above MAX_JSON_BODY_BYTES with 413."""
    max_bytes = max_json_body_bytes()
    if _content_length_too_large(request, max_bytes):
        raise HTTPException(status_code=413, detail="Payload too large")
    body = await request.body()
    if len(body) > max_bytes:
        raise HTTPException(status_code=413, detail="Payload too large")
    return body
