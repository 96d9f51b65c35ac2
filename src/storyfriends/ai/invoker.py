"""AI invocation adapter.

Sends a prompt to a chat model with a structured output contract and
returns the validated contract instance. Every call, successful or not, is
recorded in the AI trace store with timing and truncated diagnostics.
Failures of any kind (provider setup, transport, parsing, contract
violations) surface as ``AIInvocationError``.
"""

from __future__ import annotations

import asyncio
import json
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, TypeVar

from langchain_core.messages import HumanMessage
from pydantic import BaseModel

from storyfriends.ai.contracts import OutputContractError, validate_output
from storyfriends.errors import AIInvocationError
from storyfriends.observability.ai_trace import DEFAULT_MAX_CHARS, AITraceEntry
from storyfriends.observability.context import get_request_id
from storyfriends.observability.logging import get_logger
from storyfriends.providers.factory import create_chat_model_from_string
from storyfriends.providers.structured_output import (
    unwrap_structured_result,
    with_structured_output,
)

if TYPE_CHECKING:
    from langchain_core.language_models import BaseChatModel
    from langchain_core.runnables import Runnable

    from storyfriends.observability.ai_trace import AITraceStore

log = get_logger(__name__)

C = TypeVar("C", bound=BaseModel)

ModelFactory = Callable[[str, float], "BaseChatModel"]


def _response_text(parsed: Any, raw_message: Any) -> str | None:
    """Best-effort text of a model response for the trace."""
    content = getattr(raw_message, "content", None)
    if isinstance(content, str) and content:
        return content
    if isinstance(parsed, BaseModel):
        return parsed.model_dump_json()
    if parsed is not None:
        try:
            return json.dumps(parsed, default=str)
        except (TypeError, ValueError):
            return str(parsed)
    if content:
        return str(content)
    return None


class AIInvoker:
    """Structured-output model caller with tracing.

    Attributes:
        trace_store: Destination for one entry per call.
        max_chars: Truncation budget for traced text.
    """

    def __init__(
        self,
        trace_store: AITraceStore,
        model_factory: ModelFactory = create_chat_model_from_string,
        max_chars: int = DEFAULT_MAX_CHARS,
    ) -> None:
        self.trace_store = trace_store
        self.max_chars = max_chars
        self._model_factory = model_factory
        self._runnables: dict[tuple[str, float, str], Runnable[Any, Any]] = {}

    def _get_runnable(
        self, model: str, temperature: float, contract: type[C]
    ) -> Runnable[Any, Any]:
        key = (model, temperature, contract.__name__)
        runnable = self._runnables.get(key)
        if runnable is None:
            chat_model = self._model_factory(model, temperature)
            runnable = with_structured_output(
                chat_model, contract, provider_name=model.partition("/")[0]
            )
            self._runnables[key] = runnable
        return runnable

    async def generate(
        self,
        *,
        flow_name: str,
        prompt: str,
        model: str,
        temperature: float,
        contract: type[C],
        session_id: str | None = None,
        parent_uid: str | None = None,
    ) -> C:
        """Run one model call and validate its output.

        Args:
            flow_name: Logical flow name for logs and traces.
            prompt: Full prompt text.
            model: ``provider/model`` string.
            temperature: Sampling temperature.
            contract: Pydantic model the output must satisfy.
            session_id: Session the call is made for.
            parent_uid: Owning account.

        Returns:
            Validated contract instance.

        Raises:
            AIInvocationError: If the call fails or the output violates the contract.
        """
        start = time.perf_counter()
        response_text: str | None = None
        log.debug("ai_call_start", flow=flow_name, model=model, temperature=temperature)

        try:
            runnable = self._get_runnable(model, temperature, contract)
            result = await runnable.ainvoke([HumanMessage(content=prompt)])
            parsed, raw_message, parsing_error = unwrap_structured_result(result)
            response_text = _response_text(parsed, raw_message)
            if parsed is None and parsing_error is not None:
                raise OutputContractError(contract.__name__, [f"<root>: {parsing_error}"])
            output = validate_output(parsed, contract)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            duration = time.perf_counter() - start
            error_text = f"{type(e).__name__}: {e}"
            await self._record(
                flow_name,
                model,
                temperature,
                prompt,
                duration,
                response=response_text,
                error=error_text,
                session_id=session_id,
                parent_uid=parent_uid,
            )
            log.error(
                "ai_call_failed",
                flow=flow_name,
                model=model,
                duration_ms=round(duration * 1000),
                error=error_text,
            )
            raise AIInvocationError(flow_name, error_text) from e

        duration = time.perf_counter() - start
        await self._record(
            flow_name,
            model,
            temperature,
            prompt,
            duration,
            response=response_text,
            session_id=session_id,
            parent_uid=parent_uid,
        )
        log.info(
            "ai_call_completed",
            flow=flow_name,
            model=model,
            duration_ms=round(duration * 1000),
        )
        return output

    async def _record(
        self,
        flow_name: str,
        model: str,
        temperature: float,
        prompt: str,
        duration: float,
        *,
        response: str | None = None,
        error: str | None = None,
        session_id: str | None = None,
        parent_uid: str | None = None,
    ) -> None:
        entry = AITraceEntry.create(
            flow_name=flow_name,
            model=model,
            temperature=temperature,
            prompt=prompt,
            duration_seconds=duration,
            response=response,
            error=error,
            session_id=session_id,
            parent_uid=parent_uid,
            request_id=get_request_id(),
            max_chars=self.max_chars,
        )
        await self.trace_store.record(entry)
