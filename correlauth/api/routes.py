from __future__ import annotations

import json

from fastapi import APIRouter, Depends, Request, Response, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from correlauth.api.schemas import ConnectionInit, Envelope, ErrorBody, ViewerResponse
from correlauth.api.transport import HttpResponseSink, http_credentials, stream_credentials
from correlauth.logging import get_logger, set_request_id
from correlauth.service.auth import AuthContext
from correlauth.service.errors import AuthenticationError
from correlauth.service.runtime import Runtime, get_runtime

logger = get_logger(__name__)

router = APIRouter(prefix="/v1")


def _runtime_for(app) -> Runtime:
    runtime = getattr(app.state, "runtime", None)
    return runtime if runtime is not None else get_runtime()


def runtime_dependency(request: Request) -> Runtime:
    return _runtime_for(request.app)


async def get_auth(
    request: Request,
    response: Response,
    runtime: Runtime = Depends(runtime_dependency),
) -> AuthContext:
    """Authenticate the request; anonymous callers get an empty context."""
    sink = HttpResponseSink(response, runtime.settings)
    credentials = http_credentials(request, runtime.settings)
    return await runtime.authenticator.authenticate(credentials, sink)


@router.get("/viewer", response_model=Envelope)
async def viewer(auth: AuthContext = Depends(get_auth)):
    data = ViewerResponse(authenticated=auth.is_authenticated, user=auth.user)
    return Envelope(status="ok", data=data.model_dump())


@router.websocket("/subscriptions")
async def subscriptions(ws: WebSocket):
    """Subscription handshake: ``connection_init`` carries the bearer token.

    There is no response channel here, so tokens due for renewal are
    rejected instead of renewed.
    """
    runtime = _runtime_for(ws.app)
    await ws.accept()
    request_id = set_request_id()
    try:
        init = ConnectionInit.model_validate(await ws.receive_json())
        try:
            auth = await runtime.authenticator.authenticate(
                stream_credentials(init.payload), None
            )
        except AuthenticationError as exc:
            details = {"reason": exc.diagnostic} if exc.diagnostic else None
            error_env = Envelope(
                status="error",
                error=ErrorBody(code=exc.error_code, message=exc.message, details=details),
                request_id=request_id,
            )
            await ws.send_json(error_env.model_dump())
            await ws.close(code=4401)
            return

        ack = ViewerResponse(authenticated=auth.is_authenticated, user=auth.user)
        await ws.send_json(
            Envelope(
                status="ok",
                data={"event": "connection_ack", **ack.model_dump()},
                request_id=request_id,
            ).model_dump()
        )
        while True:
            message = await ws.receive_json()
            if not isinstance(message, dict):
                continue
            if message.get("type") == "connection_terminate":
                await ws.close()
                return
            if message.get("type") == "ping":
                await ws.send_json(
                    Envelope(status="ok", data={"event": "pong"}, request_id=request_id).model_dump()
                )
    except WebSocketDisconnect:
        return
    except (json.JSONDecodeError, ValidationError):
        logger.warning("websocket_invalid_init", request_id=request_id)
        error_env = Envelope(
            status="error",
            error=ErrorBody(code="invalid_json", message="connection_init expected"),
            request_id=request_id,
        )
        await ws.send_json(error_env.model_dump())
        await ws.close(code=1003)
