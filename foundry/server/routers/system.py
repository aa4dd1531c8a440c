from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from foundry import __version__
from foundry.server.routers.auth import check_rate_limit

logger = logging.getLogger(__name__)

router = APIRouter(tags=["system"])


@router.get("/health", dependencies=[Depends(check_rate_limit)])
async def health():
    """Liveness probe. Unsigned, but throttled."""
    return {"status": "ok", "version": __version__}
