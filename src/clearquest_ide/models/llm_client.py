"""
LLM client abstraction.

Runs a local Ollama model through the CLI and returns structured JSON. Only
fact extraction uses the LLM; clarifier wording is always template-driven.
"""

from __future__ import annotations

import ast
import asyncio
import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, Field

from clearquest_ide.config import get_settings

logger = logging.getLogger(__name__)

DEFAULT_OLLAMA_MODEL = "gpt-oss:20b"


class Message(BaseModel):
    """A message in a conversation."""

    role: str = Field(..., description="Role of the speaker (system, user, assistant)")
    content: str = Field(..., description="Message content")


class LLMResponse(BaseModel):
    """Response from an LLM."""

    content: str = Field(..., description="Generated text content")
    finish_reason: str = Field(default="stop", description="Reason for completion")
    model: str = Field(default="", description="Model used for generation")


class OllamaError(Exception):
    """Exception raised when the Ollama CLI fails."""

    def __init__(self, message: str, return_code: int | None = None, stderr: str = "") -> None:
        super().__init__(message)
        self.return_code = return_code
        self.stderr = stderr


class LLMClientBase(ABC):
    """Abstract base class for LLM clients."""

    @abstractmethod
    async def chat(self, messages: list[Message], temperature: float = 0.2) -> LLMResponse:
        """
        Generate a chat completion.

        Args:
            messages: Conversation history.
            temperature: Sampling temperature.

        Returns:
            Generated response; `finish_reason` is "error" on failure.
        """
        ...

    async def chat_with_json(
        self,
        messages: list[Message],
        schema: dict[str, Any] | None = None,
        temperature: float = 0.2,
    ) -> dict[str, Any]:
        """
        Generate a chat completion and parse it as a JSON object.

        Args:
            messages: Conversation history.
            schema: Optional JSON schema the output must match.
            temperature: Sampling temperature.

        Returns:
            Parsed JSON object, or an empty dict on error.
        """
        instruction = "You must respond with valid JSON only. No additional text or explanation."
        if schema:
            instruction += f" Your response must match this JSON schema: {json.dumps(schema)}"

        response = await self.chat([Message(role="system", content=instruction), *messages], temperature)

        if response.finish_reason == "error" or not response.content:
            logger.warning("JSON chat failed, returning empty dict")
            return {}

        parsed = parse_json_loose(extract_json_block(response.content))
        if parsed is None:
            parsed = parse_json_loose(response.content)
        if isinstance(parsed, dict):
            return parsed
        if isinstance(parsed, list):
            return {"items": parsed}

        logger.warning("Failed to parse JSON from LLM response")
        logger.debug(f"Response content: {response.content[:500]}")
        return {}


class LLMClient(LLMClientBase):
    """
    Ollama-based LLM client.

    Each request runs `ollama run <model>` with the prompt on stdin.
    """

    def __init__(
        self,
        model: str | None = None,
        max_retries: int | None = None,
        timeout: int | None = None,
    ) -> None:
        """
        Initialize the Ollama LLM client.

        Args:
            model: Model name (defaults to the configured model).
            max_retries: Retries on failure (defaults to settings).
            timeout: Timeout in seconds per attempt (defaults to settings).
        """
        settings = get_settings()
        self._model = model or settings.llm_model_name or DEFAULT_OLLAMA_MODEL
        self._max_retries = settings.llm_max_retries if max_retries is None else max_retries
        self._timeout = settings.llm_timeout if timeout is None else timeout

        logger.info(f"Initialized Ollama LLM client with model: {self._model}")

    @property
    def model(self) -> str:
        """Get the model name."""
        return self._model

    @staticmethod
    def build_prompt(messages: list[Message]) -> str:
        """Flatten messages into a single role-tagged prompt."""
        parts = [f"[{msg.role.upper()}]\n{msg.content.strip()}\n" for msg in messages]
        parts.append("[ASSISTANT]\n")
        return "\n".join(parts)

    async def _run_ollama(self, prompt: str) -> str:
        """
        Run the Ollama CLI with retries.

        Raises:
            OllamaError: If every attempt fails.
        """
        last_error: OllamaError | None = None

        for attempt in range(1, self._max_retries + 2):
            try:
                process = await asyncio.create_subprocess_exec(
                    "ollama",
                    "run",
                    self._model,
                    stdin=asyncio.subprocess.PIPE,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                )
            except FileNotFoundError as e:
                raise OllamaError("Ollama CLI not found. Please install Ollama: https://ollama.ai") from e

            try:
                stdout, stderr = await asyncio.wait_for(
                    process.communicate(prompt.encode("utf-8")),
                    timeout=self._timeout,
                )
            except asyncio.TimeoutError:
                process.kill()
                await process.wait()
                logger.warning(f"Ollama timed out after {self._timeout}s (attempt {attempt})")
                last_error = OllamaError(f"Ollama timed out after {self._timeout} seconds")
                continue

            if process.returncode != 0:
                error_text = stderr.decode("utf-8", errors="replace").strip()
                logger.warning(f"Ollama failed (attempt {attempt}): {error_text or process.returncode}")
                last_error = OllamaError(
                    f"Ollama exited with code {process.returncode}",
                    return_code=process.returncode,
                    stderr=error_text,
                )
                continue

            return stdout.decode("utf-8", errors="replace").strip()

        raise last_error or OllamaError("Ollama failed after all retries")

    async def chat(self, messages: list[Message], temperature: float = 0.2) -> LLMResponse:
        prompt = self.build_prompt(messages)
        try:
            content = await self._run_ollama(prompt)
        except OllamaError as e:
            logger.error(f"Ollama chat failed: {e}")
            return LLMResponse(content="", finish_reason="error", model=self._model)
        return LLMResponse(content=content, finish_reason="stop", model=self._model)


def extract_json_block(content: str) -> str:
    """
    Cut the first balanced JSON object or array out of model output.

    Returns the input unchanged when no bracket is found.
    """
    text = content.strip()
    start = text.find("{")
    if start == -1:
        start = text.find("[")
    if start == -1:
        return text

    opener = text[start]
    closer = "}" if opener == "{" else "]"
    depth = 0
    for i in range(start, len(text)):
        if text[i] == opener:
            depth += 1
        elif text[i] == closer:
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return text[start:]


def repair_json_text(raw: str) -> str:
    """Fix the JSON mistakes models commonly make."""
    if not raw:
        return ""

    result = raw.strip()
    result = re.sub(r"^```(?:json)?\s*", "", result, flags=re.IGNORECASE)
    result = re.sub(r"\s*```$", "", result)
    result = (
        result.replace("“", '"')
        .replace("”", '"')
        .replace("‘", "'")
        .replace("’", "'")
    )
    result = re.sub(r",(\s*[}\]])", r"\1", result)
    result = re.sub(r"\bNone\b", "null", result)
    result = re.sub(r"\bTrue\b", "true", result)
    result = re.sub(r"\bFalse\b", "false", result)
    # Bare object keys only, directly after { or ,
    result = re.sub(r"([\{,]\s*)([A-Za-z_][A-Za-z0-9_\-]*)(\s*:)", r'\1"\2"\3', result)
    if "'" in result and '"' not in result:
        result = result.replace("'", '"')
    return result


def _to_json_types(obj: Any) -> Any:
    if obj is ...:
        return None
    if obj is None or isinstance(obj, (str, int, float, bool)):
        return obj
    if isinstance(obj, dict):
        return {str(k): _to_json_types(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple, set)):
        return [_to_json_types(v) for v in obj]
    return str(obj)


def parse_json_loose(raw: str) -> dict[str, Any] | list[Any] | None:
    """
    Parse JSON with best-effort repair, falling back to a Python literal.

    Returns:
        A dict or list on success, else None.
    """
    if not raw:
        return None

    cleaned = repair_json_text(raw)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass

    for candidate in (raw.strip(), cleaned):
        try:
            obj = ast.literal_eval(candidate)
        except (ValueError, SyntaxError, TypeError, MemoryError, RecursionError):
            continue
        if isinstance(obj, (dict, list, tuple, set)):
            return _to_json_types(obj)
        return None
    return None
