"""Structured output wiring for chat models.

All providers use LangChain's ``json_schema`` method with
``include_raw=True`` so the raw message survives for tracing even when
parsing fails. OpenAI strict mode requires every property in ``required``;
schemas are post-processed for it with ``_make_all_required``.
"""

from __future__ import annotations

import copy
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

from storyfriends.observability.logging import get_logger

if TYPE_CHECKING:
    from langchain_core.language_models import BaseChatModel
    from langchain_core.runnables import Runnable

log = get_logger(__name__)


def _make_all_required(schema: dict[str, Any], schema_name: str = "root") -> dict[str, Any]:
    """Make every property required, recursively (in place).

    Args:
        schema: JSON schema dict to modify.
        schema_name: Name for logging.

    Returns:
        The modified schema.
    """
    if "properties" in schema:
        schema["required"] = sorted(schema["properties"])
        for prop_name, prop_schema in schema["properties"].items():
            if isinstance(prop_schema, dict):
                _make_all_required(prop_schema, f"{schema_name}.{prop_name}")

    if isinstance(schema.get("items"), dict):
        _make_all_required(schema["items"], f"{schema_name}[]")

    for def_name, def_schema in schema.get("$defs", {}).items():
        if isinstance(def_schema, dict):
            _make_all_required(def_schema, def_name)

    return schema


def with_structured_output(
    model: BaseChatModel,
    schema: type[BaseModel],
    provider_name: str | None = None,
) -> Runnable[Any, Any]:
    """Wrap a model so ``ainvoke`` returns ``{"raw", "parsed", "parsing_error"}``.

    Args:
        model: Base chat model.
        schema: Pydantic contract for the output.
        provider_name: Used to apply OpenAI strict-mode schema changes.

    Returns:
        Runnable producing the include_raw dict.
    """
    json_schema = schema.model_json_schema()
    is_openai = bool(provider_name and provider_name.lower().startswith("openai"))
    if is_openai:
        log.debug("applying_openai_strict_schema", schema=schema.__name__)
        # Deep copy to avoid mutating pydantic's cached schema
        json_schema = _make_all_required(copy.deepcopy(json_schema), schema.__name__)

    return model.with_structured_output(
        json_schema,
        method="json_schema",
        include_raw=True,
        strict=True if is_openai else None,
    )


def strip_null_values(data: Any) -> Any:
    """Drop ``None`` values from dicts, recursively.

    Models often emit explicit nulls for optional fields; treating them as
    absent lets pydantic apply defaults.
    """
    if isinstance(data, dict):
        return {k: strip_null_values(v) for k, v in data.items() if v is not None}
    if isinstance(data, list):
        return [strip_null_values(v) for v in data]
    return data


def unwrap_structured_result(raw_result: Any) -> tuple[Any, Any, Any]:
    """Split an ``include_raw=True`` result into (parsed, raw, parsing_error).

    Results that are not include_raw dicts (mocks, providers returning the
    model directly) are treated as already parsed.
    """
    if isinstance(raw_result, dict) and "parsed" in raw_result:
        parsed = raw_result["parsed"]
        if isinstance(parsed, dict):
            parsed = strip_null_values(parsed)
        return parsed, raw_result.get("raw"), raw_result.get("parsing_error")
    return raw_result, None, None
