from __future__ import annotations

import logging
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from foundry.base.config import get_config
from foundry.security.authenticator import AuthContext, RequestAuthenticator
from foundry.security.capability import Operator, get_capability_checker
from foundry.security.rate_limit import get_rate_limiter

logger = logging.getLogger(__name__)

basic = HTTPBasic(auto_error=False)

_authenticator: Optional[RequestAuthenticator] = None


def get_authenticator() -> RequestAuthenticator:
    global _authenticator
    if _authenticator is None:
        _authenticator = RequestAuthenticator()
    return _authenticator


def set_authenticator(authenticator: Optional[RequestAuthenticator]) -> None:
    global _authenticator
    _authenticator = authenticator


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def get_client_ip(request: Request) -> str:
    if get_config().security.trust_forwarded_for:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


# ---------------------------------------------------------------------------
# Request pipeline: throttle -> signature -> capability
# ---------------------------------------------------------------------------

async def check_rate_limit(request: Request) -> None:
    get_rate_limiter().check(get_client_ip(request))


async def verify_signature(request: Request) -> AuthContext:
    body = await request.body()
    return get_authenticator().authenticate(
        request.method,
        request.url.path,
        request.headers,
        query=request.query_params.multi_items(),
        body=body,
    )


async def require_capability(
    credentials: Optional[HTTPBasicCredentials] = Depends(basic),
) -> Optional[Operator]:
    pair = (credentials.username, credentials.password) if credentials else None
    return get_capability_checker().verify(pair)


signed_request = [
    Depends(check_rate_limit),
    Depends(verify_signature),
    Depends(require_capability),
]
