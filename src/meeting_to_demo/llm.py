"""Chat model construction for the LLM-backed capabilities.

Every real LLM capability goes through :func:`get_chat_model` (free text, used
for v0 prototypes) or :func:`get_structured_chat_model` (pydantic-validated
output, used for briefs, context packets and PRDs). Both resolve their API key
from the environment after loading ``.env``.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Generic, Literal, Protocol, TypeVar

from dotenv import load_dotenv
from langchain_openai import ChatOpenAI
from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)
StructuredOutputMethod = Literal["function_calling", "json_mode", "json_schema"]

DEFAULT_TIMEOUT_SECONDS = 120
DEFAULT_MAX_RETRIES = 2


class SupportsInvoke(Protocol):
    def invoke(self, input: Any) -> Any:  # noqa: ANN401
        ...


@dataclass(slots=True)
class StructuredOutputAdapter(Generic[ModelT]):
    """Runnable whose ``invoke`` always returns a validated ``schema`` instance."""

    schema: type[ModelT]
    runnable: SupportsInvoke

    def invoke(self, prompt: Any) -> ModelT:
        return normalize_structured_output(raw_output=self.runnable.invoke(prompt), schema=self.schema)


def load_env_file(repo_root: Path | None = None) -> None:
    env_path = (repo_root if repo_root is not None else Path.cwd()) / ".env"
    if env_path.is_file():
        load_dotenv(env_path)


def read_api_key(name: str, *, repo_root: Path | None = None) -> str:
    """Value of credential ``name`` or ``''``; the process environment wins over ``.env``."""
    load_env_file(repo_root)
    return os.getenv(name, "").strip()


def ensure_api_key(name: str = "OPENAI_API_KEY", *, repo_root: Path | None = None) -> str:
    key = read_api_key(name, repo_root=repo_root)
    if not key:
        raise RuntimeError(f"{name} is required for LLM-backed adapters")
    return key


def get_chat_model(
    *,
    model_name: str,
    temperature: float = 0.0,
    timeout: int = DEFAULT_TIMEOUT_SECONDS,
    max_retries: int = DEFAULT_MAX_RETRIES,
    api_key_env: str = "OPENAI_API_KEY",
    base_url: str | None = None,
    repo_root: Path | None = None,
) -> ChatOpenAI:
    """Build a ``ChatOpenAI`` client.

    ``base_url`` points the client at any OpenAI-compatible endpoint (v0 is
    one) and ``api_key_env`` names the variable holding that endpoint's key.

    Raises:
        ValueError: ``model_name`` is blank.
        RuntimeError: The key named by ``api_key_env`` is not configured.
    """
    if not model_name or not model_name.strip():
        raise ValueError("model_name must be a non-empty string")
    options: dict[str, Any] = {
        "model": model_name.strip(),
        "temperature": temperature,
        "timeout": timeout,
        "max_retries": max_retries,
        "api_key": ensure_api_key(api_key_env, repo_root=repo_root),
    }
    if base_url:
        options["base_url"] = base_url
    logger.debug("Chat model %s (endpoint=%s)", model_name, base_url or "openai")
    return ChatOpenAI(**options)


def _unwrap_envelope(raw_output: Any, schema_name: str) -> Any:
    # ``include_raw=True`` responses arrive as {"raw", "parsed", "parsing_error"}.
    if not (isinstance(raw_output, dict) and {"parsed", "parsing_error"} <= raw_output.keys()):
        return raw_output
    if raw_output["parsing_error"] is not None:
        raise RuntimeError(f"Structured output parsing failed for {schema_name}: {raw_output['parsing_error']!r}")
    if raw_output["parsed"] is None:
        raise RuntimeError(f"Structured output returned no parsed payload for {schema_name}")
    return raw_output["parsed"]


def normalize_structured_output(*, raw_output: Any, schema: type[ModelT]) -> ModelT:
    """Coerce an envelope, a pydantic model or a plain dict into ``schema``.

    Raises:
        RuntimeError: The output is unparseable, of an unsupported type, or
            fails schema validation.
    """
    payload = _unwrap_envelope(raw_output, schema.__name__)
    if isinstance(payload, schema):
        return payload
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(mode="json")
    if not isinstance(payload, dict):
        raise RuntimeError(
            f"Structured output for {schema.__name__} has unsupported type {type(payload).__name__}"
        )
    try:
        return schema.model_validate(payload)
    except ValidationError as exc:
        raise RuntimeError(f"Structured output validation failed for {schema.__name__}: {exc}") from exc


def get_structured_chat_model(
    *,
    model_name: str,
    schema: type[ModelT],
    temperature: float = 0.0,
    timeout: int = DEFAULT_TIMEOUT_SECONDS,
    max_retries: int = DEFAULT_MAX_RETRIES,
    method: StructuredOutputMethod = "json_schema",
    repo_root: Path | None = None,
) -> StructuredOutputAdapter[ModelT]:
    model = get_chat_model(
        model_name=model_name,
        temperature=temperature,
        timeout=timeout,
        max_retries=max_retries,
        repo_root=repo_root,
    )
    runnable = model.with_structured_output(schema, method=method, include_raw=True)
    return StructuredOutputAdapter(schema=schema, runnable=runnable)
