"""
FinChat - Data Stream Line Protocol
====================================
Encoders for the AI data stream protocol (v1) spoken by the chat UI.
Every part is one line: ``<code>:<json>\\n``.

    0  text delta          ``0:"Hello"``
    8  message annotations ``8:[{"messageIdFromServer": "..."}]``
    3  error               ``3:"An error occurred."``
    d  finish message      ``d:{"finishReason": "stop"}``
"""

from __future__ import annotations

import json

STREAM_HEADERS = {"X-Vercel-AI-Data-Stream": "v1", "Cache-Control": "no-cache", "X-Accel-Buffering": "no"}
STREAM_MEDIA_TYPE = "text/plain; charset=utf-8"


def _part(code: str, value: object) -> str:
    return f"{code}:{json.dumps(value, ensure_ascii=False, separators=(',', ':'))}\n"


def encode_text(text: str) -> str:
    return _part("0", text)


def encode_annotations(annotations: list[dict]) -> str:
    return _part("8", annotations)


def encode_error(message: str) -> str:
    return _part("3", message)


def encode_finish(reason: str = "stop") -> str:
    return _part("d", {"finishReason": reason})
