# backend/pdvstore/routes/__init__.py
"""
Shared helpers for the JSON route handlers.

Engine results map onto responses one way everywhere: ok -> 200 (or the
given success status), domain failure -> 400 with {ok: false, error}.
"""
from __future__ import annotations

from flask import jsonify, request

from ..results import OperationResult


def result_response(result: OperationResult, status: int = 200):
    body = result.to_dict()
    if not result.ok:
        return jsonify(body), 400
    return jsonify(body), status


def json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def require_fields(data: dict, *names: str) -> None:
    """Raise KeyError naming the first missing field."""
    for name in names:
        if data.get(name) is None:
            raise KeyError(name)
