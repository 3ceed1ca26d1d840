"""
Language model delegate.

Wraps Google ADK's LiteLlm model so the rest of the assistant only deals with
role-tagged message dicts and text. All calls go through the circuit breaker
and the security callback.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Any

from google.adk.models.lite_llm import LiteLlm
from google.adk.models.llm_request import LlmRequest
from google.genai import types

from lemon_law.callbacks import before_model_callback
from lemon_law.circuit_breaker import CircuitBreaker, CircuitState
from lemon_law.config import settings
from lemon_law.observability import trace_span

logger = logging.getLogger(__name__)

# ADK content roles
ROLE_MAP = {"user": "user", "assistant": "model"}


class LanguageModelError(RuntimeError):
    """Raised when the model provider fails or returns nothing."""


def _response_text(llm_response) -> str:
    content = getattr(llm_response, "content", None)
    if not content or not content.parts:
        return ""
    return "".join(part.text or "" for part in content.parts)


def build_llm_request(
    model: str,
    messages: list[dict[str, Any]],
    temperature: float | None = None,
    response_schema: Any = None,
) -> LlmRequest:
    """
    Convert role-tagged messages into an ADK LlmRequest.

    System messages are joined, in order, into the system instruction; user
    and assistant messages become the conversation contents.
    """
    system_parts = [m["content"] for m in messages if m.get("role") == "system"]
    contents = [
        types.Content(role=ROLE_MAP[m["role"]], parts=[types.Part(text=m["content"])])
        for m in messages
        if m.get("role") in ROLE_MAP
    ]

    config_kwargs = {
        "system_instruction": "\n\n".join(system_parts) or None,
        "temperature": temperature,
    }
    if response_schema is not None:
        config_kwargs["response_mime_type"] = "application/json"
        config_kwargs["response_schema"] = response_schema

    return LlmRequest(
        model=model, contents=contents, config=types.GenerateContentConfig(**config_kwargs)
    )


class LanguageModelClient:
    """
    Text generation capability used by the assistant.

    stream() yields text fragments as the model produces them; complete()
    returns the final content. Both accept an optional structured-output
    schema (a pydantic model class).
    """

    def __init__(self, model: LiteLlm | None = None, circuit_breaker: CircuitBreaker | None = None):
        self.model_name = settings.litellm_model
        self.model = model or LiteLlm(
            model=settings.litellm_model,
            api_key=settings.openai_api_key,
            timeout=settings.llm_timeout_seconds,
        )
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=settings.circuit_breaker_failure_threshold,
            timeout=settings.circuit_breaker_timeout,
            name="LanguageModelCircuitBreaker",
        )
        logger.info(f"LanguageModelClient initialized: model={self.model_name}")

    def _request(
        self, messages, temperature, response_schema, screen_user_messages=True
    ) -> LlmRequest:
        guarded = before_model_callback(messages, screen_user_messages=screen_user_messages)
        return build_llm_request(
            self.model_name,
            guarded,
            temperature=settings.llm_temperature if temperature is None else temperature,
            response_schema=response_schema,
        )

    async def stream(
        self,
        messages: list[dict[str, Any]],
        temperature: float | None = None,
        response_schema: Any = None,
        screen_user_messages: bool = True,
    ) -> AsyncIterator[str]:
        """
        Yield generated text fragments.

        Closing the iterator early (client disconnect) abandons the call. It
        counts as neither success nor failure, except that an abandoned
        HALF_OPEN recovery attempt reopens the circuit.

        Raises:
            CircuitBreakerOpenError: If the provider is marked down
            LanguageModelError: If the provider call fails
        """
        llm_request = self._request(
            messages, temperature, response_schema, screen_user_messages
        )
        self.circuit_breaker.ensure_closed()

        with trace_span("llm_stream", model=self.model_name) as span:
            chunks = 0
            try:
                final_text = ""
                async for llm_response in self.model.generate_content_async(
                    llm_request, stream=True
                ):
                    text = _response_text(llm_response)
                    if not text:
                        continue
                    if llm_response.partial:
                        chunks += 1
                        yield text
                    else:
                        final_text = text

                # Providers that do not stream deliver one aggregated response
                if chunks == 0 and final_text:
                    chunks = 1
                    yield final_text
            except (GeneratorExit, asyncio.CancelledError):
                if self.circuit_breaker.state == CircuitState.HALF_OPEN:
                    logger.warning("Recovery stream abandoned before completion")
                    self.circuit_breaker.record_failure(None)
                raise
            except Exception as e:
                self.circuit_breaker.record_failure(e)
                raise LanguageModelError(f"Language model stream failed: {e}") from e
            finally:
                span["chunks"] = chunks

        self.circuit_breaker.record_success()

    async def _generate_text(self, llm_request: LlmRequest) -> str:
        text = ""
        try:
            async for llm_response in self.model.generate_content_async(
                llm_request, stream=False
            ):
                text += _response_text(llm_response)
        except Exception as e:
            raise LanguageModelError(f"Language model call failed: {e}") from e

        if not text.strip():
            raise LanguageModelError("Language model returned an empty response.")
        return text

    async def complete(
        self,
        messages: list[dict[str, Any]],
        temperature: float | None = None,
        response_schema: Any = None,
        screen_user_messages: bool = True,
    ) -> str:
        """
        Return the final generated content.

        Raises:
            CircuitBreakerOpenError: If the provider is marked down
            LanguageModelError: If the call fails or returns no text
        """
        llm_request = self._request(
            messages, temperature, response_schema, screen_user_messages
        )

        with trace_span("llm_complete", model=self.model_name):
            return await self.circuit_breaker.call_async(self._generate_text, llm_request)

    def get_circuit_breaker_state(self) -> dict:
        """Get circuit breaker state for monitoring."""
        return self.circuit_breaker.get_state()
