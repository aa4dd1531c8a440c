from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, field_validator
from sse_starlette.sse import EventSourceResponse

from foundry.commands.dispatcher import get_dispatcher, parse_command
from foundry.commands.validator import validate_command
from foundry.engine.emitter import EventEmitter
from foundry.engine.sink import END_OF_STREAM, ChannelSink
from foundry.security.authenticator import AuthContext
from foundry.server.routers.auth import signed_request, verify_signature

logger = logging.getLogger(__name__)

router = APIRouter(tags=["run"], dependencies=signed_request)

# How long the response generator waits for the worker before re-checking
POLL_INTERVAL = 1.0


class RunRequest(BaseModel):
    command: Optional[str] = None

    @field_validator("command", mode="before")
    @classmethod
    def coerce_command(cls, v: Any) -> Optional[str]:
        if v is None or isinstance(v, str):
            return v
        raise ValueError("command must be a string")


@router.post("/run")
async def run_command(req: RunRequest, auth: AuthContext = Depends(verify_signature)):
    """
    Execute one command and stream its events.

    Validation failures are returned as a JSON error before any event is
    sent. Once the stream is open, failures arrive as command_error.
    """
    envelope = parse_command(validate_command(req.command or ""))

    sink = ChannelSink()
    emitter = EventEmitter(sink, command=envelope.raw)
    dispatcher = get_dispatcher()

    def _work() -> None:
        try:
            dispatcher.dispatch(envelope, emitter)
        finally:
            sink.finish()

    async def event_generator():
        # Started on first read: a response that is never iterated runs nothing
        logger.info(f"[API] Running '{envelope.raw}' (request_id={auth.request_id or '-'})")
        worker = threading.Thread(target=_work, name=f"foundry-run-{auth.nonce_hash[:8]}", daemon=True)
        try:
            worker.start()
            while True:
                event = await asyncio.to_thread(sink.next_event, POLL_INTERVAL)
                if event is END_OF_STREAM:
                    break
                if event is None:
                    continue
                yield {"event": event.type.value, "data": event.to_json()}
        finally:
            sink.close()

    return EventSourceResponse(
        event_generator(),
        sep="\n",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
