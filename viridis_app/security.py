from __future__ import annotations

import uuid

from flask import g, request


def assign_request_id() -> None:
    g.request_id = request.headers.get("X-Request-Id", "").strip()[:64] or str(uuid.uuid4())


def attach_security_headers(response):
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "no-referrer"
    # viewers share their location with the page to get a proximity color
    response.headers["Permissions-Policy"] = "camera=(), microphone=(), geolocation=(self)"
    response.headers["Cross-Origin-Opener-Policy"] = "same-origin"
    response.headers[
        "Content-Security-Policy"
    ] = (
        "default-src 'self'; "
        "style-src 'self' 'unsafe-inline'; "
        "img-src 'self' data:; "
        "connect-src 'self' ws: wss:; "
        "object-src 'none';"
    )

    if request.is_secure:
        response.headers["Strict-Transport-Security"] = "max-age=63072000; includeSubDomains"

    if hasattr(g, "request_id"):
        response.headers["X-Request-Id"] = g.request_id

    return response
