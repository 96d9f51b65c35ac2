"""HTTP surface for the story workflow.

Two POST endpoints wrap the state machine and the compile service. Workflow
failures come back as ``{ok: false, ...}`` bodies with a status code chosen
from their error kind. Enrichment is scheduled as a background task after
the response whenever a request produced a fresh story.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from fastapi import BackgroundTasks, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from storyfriends import __version__
from storyfriends.models import Action, ErrorKind, ErrorOutput, FinishedOutput
from storyfriends.observability.context import (
    bind_request_context,
    clear_request_context,
    get_request_id,
)
from storyfriends.observability.logging import get_logger
from storyfriends.workflow.fanout import fan_out
from storyfriends.workflow.sessions import SESSIONS_COLLECTION
from storyfriends.workflow.state_machine import AdvanceRequest

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from fastapi import Response

    from storyfriends.services import StoryServices

log = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.INPUT: 400,
    ErrorKind.UPSTREAM: 502,
    ErrorKind.CONFLICT: 409,
    ErrorKind.INTERNAL: 500,
}


class AdvanceBody(BaseModel):
    """Body of ``POST /api/story-friends``."""

    session_id: str = Field(min_length=1)
    child_id: str | None = None
    action: Action | None = None
    selected_companion_ids: list[str] | None = None
    selected_option_id: str | None = None
    output_style_id: str | None = None


class CompileBody(BaseModel):
    """Body of ``POST /api/story-compile``."""

    session_id: str = Field(min_length=1)
    output_style_id: str | None = None


def _session_not_found(session_id: str) -> JSONResponse:
    body = ErrorOutput(error=f"Session '{session_id}' not found", kind=ErrorKind.INPUT)
    return JSONResponse(body.model_dump(mode="json"), status_code=404)


def create_app(services: StoryServices) -> FastAPI:
    """Create the FastAPI application around built services."""

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        log.info("api_started", version=__version__)
        yield
        services.close()

    app = FastAPI(title="StoryFriends", version=__version__, lifespan=lifespan)
    app.state.services = services

    def schedule_enrichment(background: BackgroundTasks, story_id: str) -> None:
        background.add_task(fan_out, story_id, services.enrichment_jobs())
        log.debug("enrichment_scheduled", story_id=story_id)

    async def session_exists(session_id: str) -> bool:
        return await services.store.get(SESSIONS_COLLECTION, session_id) is not None

    @app.middleware("http")
    async def request_context(
        request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        request_id = bind_request_context(request.headers.get(REQUEST_ID_HEADER))
        try:
            response = await call_next(request)
        finally:
            clear_request_context()
        response.headers[REQUEST_ID_HEADER] = request_id
        return response

    @app.exception_handler(RequestValidationError)
    async def invalid_body(_: Request, exc: RequestValidationError) -> JSONResponse:
        errors = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'] if p != 'body')}: {err['msg']}"
            for err in exc.errors()
        )
        body = ErrorOutput(error=f"Invalid request: {errors}", kind=ErrorKind.INPUT)
        return JSONResponse(body.model_dump(mode="json"), status_code=400)

    @app.get("/healthz")
    async def healthz() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/api/story-friends")
    async def story_friends(body: AdvanceBody, background: BackgroundTasks) -> JSONResponse:
        bind_request_context(get_request_id(), session_id=body.session_id)
        if not await session_exists(body.session_id):
            return _session_not_found(body.session_id)

        output = await services.state_machine.advance(
            AdvanceRequest(
                session_id=body.session_id,
                child_id=body.child_id,
                action=body.action,
                selected_companion_ids=body.selected_companion_ids,
                selected_option_id=body.selected_option_id,
                output_style_id=body.output_style_id,
                request_id=get_request_id(),
            )
        )
        status_code = 200
        if isinstance(output, ErrorOutput):
            status_code = STATUS_BY_KIND[output.kind]
        elif isinstance(output, FinishedOutput) and output.fresh:
            schedule_enrichment(background, output.story_id)
        return JSONResponse(output.model_dump(mode="json"), status_code=status_code)

    @app.post("/api/story-compile")
    async def story_compile(body: CompileBody, background: BackgroundTasks) -> JSONResponse:
        bind_request_context(get_request_id(), session_id=body.session_id)
        if not await session_exists(body.session_id):
            return _session_not_found(body.session_id)

        outcome = await services.compile_service.compile(
            body.session_id,
            output_style_id=body.output_style_id,
            request_id=get_request_id(),
        )
        content: dict[str, Any] = outcome.to_response()
        if outcome.ok:
            if outcome.fresh and outcome.story_id:
                schedule_enrichment(background, outcome.story_id)
            return JSONResponse(content)
        return JSONResponse(
            content, status_code=STATUS_BY_KIND[outcome.error_kind or ErrorKind.INTERNAL]
        )

    return app
