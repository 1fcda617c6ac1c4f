"""Vertex AI Gemini client used by the categorization assistant.

Wraps the ``vertexai`` SDK behind a single async :meth:`LLMService.generate`
call.  The SDK is initialised lazily on first use so the application can
start without Google Cloud credentials when categorization is disabled.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Final

import structlog
import vertexai
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from vertexai.generative_models import (
    Content,
    GenerationConfig,
    GenerativeModel,
    Part,
)

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

REDRESSAL_SYSTEM_PROMPT: Final[str] = """\
You help route public grievances to the government office responsible \
for them.  You only ever choose from the categories, departments and \
offices you are given, and you answer in strict JSON with no commentary.\
"""


@dataclass(slots=True)
class LLMResult:
    """Result returned by :meth:`LLMService.generate`."""

    text: str
    tokens_used: dict[str, int]
    processing_time_ms: float
    provider: str = field(default="gemini")


class LLMService:
    """Async interface to Vertex AI Gemini."""

    def __init__(
        self,
        project_id: str,
        region: str = "asia-south1",
        model_name: str = "gemini-2.0-flash",
    ) -> None:
        self._project_id = project_id
        self._region = region
        self._model_name = model_name
        self._model: GenerativeModel | None = None
        self._initialized = False

    # -- lifecycle ----------------------------------------------------------

    def _initialize(self) -> None:
        """Lazily initialize the Vertex AI SDK and model handle."""
        if self._initialized:
            return
        vertexai.init(project=self._project_id, location=self._region)
        self._model = GenerativeModel(
            model_name=self._model_name,
            system_instruction=[Part.from_text(REDRESSAL_SYSTEM_PROMPT)],
        )
        self._initialized = True
        logger.info(
            "llm.initialized",
            project=self._project_id,
            region=self._region,
            model=self._model_name,
        )

    def _get_model(self) -> GenerativeModel:
        self._initialize()
        assert self._model is not None  # noqa: S101
        return self._model

    # -- public API ---------------------------------------------------------

    @retry(
        retry=retry_if_exception_type(Exception),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        reraise=True,
    )
    async def generate(
        self,
        prompt: str,
        *,
        temperature: float = 0.1,
        max_output_tokens: int = 512,
        json_output: bool = True,
    ) -> LLMResult:
        """Run a single-turn prompt and return the model's text.

        Parameters
        ----------
        prompt:
            The complete user turn.
        temperature:
            Sampling temperature.  Lower is more deterministic.
        json_output:
            Ask the model for an ``application/json`` response.
        """
        start = time.perf_counter()
        model = self._get_model()

        generation_config = GenerationConfig(
            temperature=temperature,
            top_p=0.8,
            max_output_tokens=max_output_tokens,
            response_mime_type="application/json" if json_output else "text/plain",
        )

        response = await model.generate_content_async(
            contents=[Content(role="user", parts=[Part.from_text(prompt)])],
            generation_config=generation_config,
        )

        elapsed_ms = (time.perf_counter() - start) * 1000
        usage = response.usage_metadata
        input_tokens = usage.prompt_token_count if usage else 0
        output_tokens = usage.candidates_token_count if usage else 0

        result = LLMResult(
            text=(response.text or "").strip(),
            tokens_used={"input": input_tokens, "output": output_tokens},
            processing_time_ms=round(elapsed_ms, 2),
        )
        logger.info(
            "llm.generate",
            prompt_length=len(prompt),
            answer_length=len(result.text),
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            processing_time_ms=result.processing_time_ms,
        )
        return result
