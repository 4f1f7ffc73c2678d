"""
storefront/utils/api.py
-----------------------
Consistent JSON responses with the request id attached.
"""
import uuid

from flask import g, jsonify, request


NO_STORE_HEADERS = {
    'Cache-Control': 'no-store, no-cache, must-revalidate, max-age=0',
}


def get_request_id() -> str:
    """Request id from the X-Request-Id header, or a fresh one."""
    existing = getattr(g, 'request_id', None)
    if existing:
        return existing
    from_header = (request.headers.get('X-Request-Id') or '').strip()
    g.request_id = from_header or f'req_{uuid.uuid4().hex}'
    return g.request_id


def json_ok(payload=None, status=200):
    body = {'ok': True}
    body.update(payload or {})
    resp = jsonify(body)
    resp.status_code = status
    resp.headers.update(NO_STORE_HEADERS)
    return resp


def json_error(status: int, message: str, code: str = None, **extra):
    """Build the standard `{"ok": false, "error": ...}` response."""
    body = {'ok': False, 'error': message}
    if code:
        body['code'] = code
    body['requestId'] = get_request_id()
    body.update(extra)
    resp = jsonify(body)
    resp.status_code = status
    resp.headers.update(NO_STORE_HEADERS)
    return resp
