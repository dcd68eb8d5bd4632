"""Bearer-token auth gate with two roles.

``admin`` may do anything; ``read`` may only issue safe methods. When no
secret is configured at all the gate is open and every caller is admin.
"""

from __future__ import annotations

import hmac
from typing import Any, Dict, Optional

from flask import Request, g

from services.errors import Forbidden, Unauthorized
from services.logging_setup import core_log as _core_log


ROLE_ADMIN = "admin"
ROLE_READ = "read"

SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})
TOKEN_HEADER = "X-File-Explorer-Token"
OPEN_PATHS = frozenset({"/api/auth/status"})


def extract_token(req: Request) -> Optional[str]:
    """Bearer header, then the custom header, then ``?token=``."""
    auth = req.headers.get("Authorization", "") or ""
    if auth[:7].lower() == "bearer ":
        tok = auth[7:].strip()
        if tok:
            return tok
    tok = (req.headers.get(TOKEN_HEADER) or "").strip()
    if tok:
        return tok
    # Query tokens end up in access logs and browser history; kept for links
    # such as downloads that cannot carry headers.
    tok = (req.args.get("token") or "").strip()
    return tok or None


def _same(a: Optional[str], b: Optional[str]) -> bool:
    if not a or not b:
        return False
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


class AuthGate:
    def __init__(self, admin_token: Optional[str] = None, read_token: Optional[str] = None) -> None:
        self.admin_token = admin_token or None
        self.read_token = read_token or None

    @property
    def required(self) -> bool:
        return bool(self.admin_token or self.read_token)

    def resolve_role(self, token: Optional[str]) -> Optional[str]:
        if not self.required:
            return ROLE_ADMIN
        if _same(token, self.admin_token):
            return ROLE_ADMIN
        if _same(token, self.read_token):
            return ROLE_READ
        return None

    def check(self, req: Request) -> None:
        """Authorize ``req``; raise on denial, record role and token on ``g``."""
        path = req.path or ""
        token = extract_token(req)
        g.caller_token = token
        g.auth_role = None

        if not path.startswith("/api/") or path in OPEN_PATHS:
            return

        role = self.resolve_role(token)
        if role is None:
            _core_log("warning", "auth.denied", path=path, method=req.method, reason="bad_token" if token else "no_token")
            raise Unauthorized("Unauthorized")
        if role != ROLE_ADMIN and req.method not in SAFE_METHODS:
            _core_log("warning", "auth.denied", path=path, method=req.method, reason="read_only")
            raise Forbidden("Admin token required")
        g.auth_role = role

    def status(self) -> Dict[str, Any]:
        return {
            "required": self.required,
            "hasReadToken": bool(self.read_token),
            "writeRequiresAdmin": self.required,
        }
