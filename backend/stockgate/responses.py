# Overview: JSON envelope shared by every endpoint.

from __future__ import annotations

from flask import jsonify

from .errors import InventoryError


def success(data=None, message: str | None = None, status: int = 200):
    """{"success": true, "data": ..., "message": ...}"""
    return jsonify({"success": True, "data": data, "message": message}), status


def failure(error: InventoryError):
    """Envelope for a known business-rule failure; the code decides the status."""
    return jsonify(error.to_dict()), error.status_code


def error_response(message: str, code: str, status: int, details: dict | None = None):
    payload = {"success": False, "error": message, "code": code}
    if details:
        payload["details"] = details
    return jsonify(payload), status


def internal_error():
    """Generic 500; the underlying exception is logged, never returned."""
    return error_response("Internal server error", "internal_error", 500)
