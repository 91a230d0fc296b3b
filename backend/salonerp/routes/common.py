# Overview: Shared helpers for route handlers (JSON bodies, typed error responses).

from flask import current_app, jsonify, request

from ..errors import SalonErpError, ValidationError


def json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")
    return data


def error_response(exc: SalonErpError):
    """Map a typed business error to its JSON body and HTTP status."""
    return jsonify(exc.to_dict()), exc.http_status


def internal_error(message: str):
    current_app.logger.exception(message)
    return jsonify({"error": "Internal server error", "code": "INTERNAL_ERROR"}), 500
