"""HTTP proxy adapter for remote hub devices.

Requests for ``/api/d/<id>/<rest>`` on an HTTP device are replayed against
``<device url>/api/<rest>`` with ``urllib.request``; the remote status,
headers and body are streamed back unchanged (hop-by-hop headers aside).
"""

from __future__ import annotations

import time
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Tuple

from flask import Request, Response

from services.errors import BadGateway
from services.logging_setup import core_log as _core_log


PROXY_TIMEOUT = 30.0
PROBE_TIMEOUT = 5.0
CHUNK_SIZE = 64 * 1024

HOP_BY_HOP = frozenset({
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailer",
    "trailers",
    "transfer-encoding",
    "upgrade",
})


def pick_token(*candidates: Optional[str]) -> Optional[str]:
    """First non-empty credential in priority order."""
    for c in candidates:
        if c:
            return c
    return None


class _NoRedirect(urllib.request.HTTPRedirectHandler):
    # Redirects are the remote's answer; the browser follows them, not us.
    def redirect_request(self, req, fp, code, msg, headers, newurl):  # type: ignore[override]
        return None


_opener = urllib.request.build_opener(_NoRedirect)


@dataclass
class ProbeResult:
    latency: int
    http_status: Optional[int] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.http_status is not None and 200 <= self.http_status < 300


def probe(url: str, token: Optional[str], timeout: float = PROBE_TIMEOUT) -> ProbeResult:
    """``GET <url>/api/files?path=`` and report status and latency."""
    headers = {"Authorization": f"Bearer {token}"} if token else {}
    req = urllib.request.Request(url.rstrip("/") + "/api/files?path=", headers=headers, method="GET")
    start = time.monotonic()
    try:
        with _opener.open(req, timeout=timeout) as resp:
            resp.read()
            status = int(resp.status)
    except urllib.error.HTTPError as e:
        status = int(e.code)
        e.close()
    except (urllib.error.URLError, OSError, ValueError) as e:
        reason = getattr(e, "reason", None) or e
        return ProbeResult(latency=int((time.monotonic() - start) * 1000), error=str(reason))
    return ProbeResult(latency=int((time.monotonic() - start) * 1000), http_status=status)


def _forward_headers(req: Request, token: Optional[str]) -> Dict[str, str]:
    headers: Dict[str, str] = {}
    for k, v in req.headers.items():
        lk = k.lower()
        if lk in HOP_BY_HOP or lk in ("host", "content-length"):
            continue
        headers[k] = v
    if token:
        for k in [k for k in headers if k.lower() == "authorization"]:
            del headers[k]
        headers["Authorization"] = f"Bearer {token}"
    return headers


def _response_headers(raw) -> List[Tuple[str, str]]:
    return [(k, v) for k, v in raw.items() if k.lower() not in HOP_BY_HOP]


def _stream(resp) -> Iterator[bytes]:
    try:
        while True:
            chunk = resp.read(CHUNK_SIZE)
            if not chunk:
                break
            yield chunk
    finally:
        resp.close()


class HttpProxy:
    def __init__(self, timeout: float = PROXY_TIMEOUT) -> None:
        self.timeout = timeout

    def target_url(self, base_url: str, rest: str, query_string: bytes) -> str:
        url = base_url.rstrip("/") + "/api/" + urllib.parse.quote(rest.lstrip("/"), safe="/")
        qs = (query_string or b"").decode("latin-1")
        return f"{url}?{qs}" if qs else url

    def forward(
        self,
        device_id: str,
        base_url: str,
        rest: str,
        req: Request,
        *,
        device_token: Optional[str] = None,
        caller_token: Optional[str] = None,
        admin_token: Optional[str] = None,
    ) -> Response:
        url = self.target_url(base_url, rest, req.query_string)
        token = pick_token(device_token, caller_token, admin_token)
        body = req.get_data(cache=False)
        data = body if (body or req.method not in ("GET", "HEAD", "OPTIONS")) else None
        out = urllib.request.Request(url, data=data, headers=_forward_headers(req, token), method=req.method)

        try:
            resp = _opener.open(out, timeout=self.timeout)
            status = int(resp.status)
        except urllib.error.HTTPError as e:
            # Non-2xx answers are forwarded as-is.
            resp = e
            status = int(e.code)
        except (urllib.error.URLError, OSError, ValueError) as e:
            reason = getattr(e, "reason", None) or e
            _core_log("warning", "proxy.failed", device=device_id, method=req.method, rest=rest, error=str(reason))
            raise BadGateway(f"Proxy error: {reason}")

        return Response(
            _stream(resp),
            status=status,
            headers=_response_headers(resp.headers),
            direct_passthrough=True,
        )
