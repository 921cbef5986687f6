# FILE: reqlog/tokens.py
"""
Built-in tokens.

Every extractor has the signature `fn(req, res, arg)` and reads only from
the request/response context it is handed. Returning None means "no
value" and renders as "-".
"""

from __future__ import annotations

import json
from email.utils import formatdate
from typing import TYPE_CHECKING, Any, Dict, Optional
from urllib.parse import parse_qsl, quote

from .context import RequestInfo, ResponseInfo

if TYPE_CHECKING:  # pragma: no cover
    from .registry import Registry


# Characters left literal by res-body escaping, besides ASCII alphanumerics.
_BODY_SAFE = "@*_+-./"


def token_url(req: RequestInfo, res: ResponseInfo, arg: str = "") -> str:
    return req.original_url or req.url


def token_method(req: RequestInfo, res: ResponseInfo, arg: str = "") -> str:
    return req.method


def token_status(req: RequestInfo, res: ResponseInfo, arg: str = "") -> Optional[int]:
    return res.status_code if res.headers_sent else None


def token_response_time(req: RequestInfo, res: ResponseInfo, arg: str = "") -> str:
    return str(req.elapsed_ms())


def token_date(req: RequestInfo, res: ResponseInfo, arg: str = "") -> str:
    # RFC 1123, always GMT
    return formatdate(usegmt=True)


def token_referrer(req: RequestInfo, res: ResponseInfo, arg: str = "") -> Optional[str]:
    headers = req.headers
    return headers.get("referer") or headers.get("referrer")


def token_remote_addr(req: RequestInfo, res: ResponseInfo, arg: str = "") -> Optional[str]:
    if req.ip:
        return req.ip
    # The app may set request.state.ip at any point before the line renders.
    explicit = req.state.get("ip")
    if explicit:
        return explicit
    if req.remote_address:
        return req.remote_address
    return req.client_host


def token_http_version(req: RequestInfo, res: ResponseInfo, arg: str = "") -> str:
    version = req.http_version
    if "." not in version:
        version = f"{version}.0"
    return version


def token_user_agent(req: RequestInfo, res: ResponseInfo, arg: str = "") -> Optional[str]:
    return req.headers.get("user-agent")


def token_req_header(req: RequestInfo, res: ResponseInfo, arg: str = "") -> Optional[str]:
    if not arg:
        return None
    return req.headers.get(arg.lower())


def token_res_header(req: RequestInfo, res: ResponseInfo, arg: str = "") -> Optional[str]:
    if not arg:
        return None
    return res.headers.get(arg.lower())


def _parse_body(req: RequestInfo) -> Any:
    """
    Parse the captured request body the way the host would have: JSON for
    JSON content types, a flat mapping for URL-encoded forms. Anything else
    is not considered parsed.
    """
    if req.body_dropped or not req.body:
        return None
    ctype = (req.headers.get("content-type") or "").split(";", 1)[0].strip().lower()
    raw = bytes(req.body)
    if ctype == "application/json" or ctype.endswith("+json"):
        return json.loads(raw.decode("utf-8"))
    if ctype == "application/x-www-form-urlencoded":
        form: Dict[str, str] = {}
        for k, v in parse_qsl(raw.decode("latin-1"), keep_blank_values=True):
            form[k] = v
        return form
    return None


def token_payload(req: RequestInfo, res: ResponseInfo, arg: str = "") -> str:
    try:
        parsed = _parse_body(req)
        if parsed is None:
            return ""
        return json.dumps(parsed, ensure_ascii=False, separators=(",", ":"))
    except (ValueError, TypeError, UnicodeDecodeError, RecursionError):
        return ""


def escape_body(body: bytes) -> str:
    return quote(body.decode("utf-8", errors="replace"), safe=_BODY_SAFE)


def token_res_body(req: RequestInfo, res: ResponseInfo, arg: str = "") -> str:
    if not res.body:
        return ""
    return escape_body(res.body)


BUILTIN_TOKENS = {
    "url": token_url,
    "method": token_method,
    "status": token_status,
    "response-time": token_response_time,
    "date": token_date,
    "referrer": token_referrer,
    "remote-addr": token_remote_addr,
    "http-version": token_http_version,
    "user-agent": token_user_agent,
    "req": token_req_header,
    "res": token_res_header,
    "payload": token_payload,
    "res-body": token_res_body,
}


def register_builtin_tokens(registry: "Registry") -> "Registry":
    for name, fn in BUILTIN_TOKENS.items():
        registry.token(name, fn)
    return registry
