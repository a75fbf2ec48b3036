# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""LLM client using LiteLLM for multi-provider support.

The memory subsystem only needs short, low-temperature completions (session
digests), so the client exposes a single complete() call. API keys and
endpoints are passed directly to acompletion() instead of environment
variables.

Example:
    >>> from tutor_memory.core.intelligence.llm import LLMClient
    >>> client = LLMClient()
    >>> response = await client.complete("Summarize: ...", temperature=0.2)
    >>> print(response.content)
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import litellm
from litellm import acompletion

from tutor_memory.core.config.settings import LLMSettings, get_settings

logger = logging.getLogger(__name__)


@dataclass
class LLMResponse:
    """Response from an LLM completion.

    Attributes:
        content: The generated text content.
        model: The model that generated the response.
        tokens_input: Number of input tokens used.
        tokens_output: Number of output tokens generated.
        finish_reason: Why generation stopped (stop, length, etc.).
        raw_response: Original response object from LiteLLM.
    """

    content: str
    model: str
    tokens_input: int = 0
    tokens_output: int = 0
    finish_reason: str = "stop"
    raw_response: Optional[object] = field(default=None, repr=False)

    @property
    def total_tokens(self) -> int:
        """Get total tokens used (input + output)."""
        return self.tokens_input + self.tokens_output


class LLMError(Exception):
    """Exception raised when LLM operation fails.

    Attributes:
        message: Error description.
        model: Model that caused the error.
        original_error: Original exception if any.
    """

    def __init__(
        self,
        message: str,
        model: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        self.message = message
        self.model = model
        self.original_error = original_error
        super().__init__(self.message)


class LLMClient:
    """Client for LLM completions via LiteLLM.

    Attributes:
        model: Default model to use for completions.
        timeout: Request timeout in seconds.
        max_retries: Maximum retry attempts.
    """

    def __init__(
        self,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        llm_settings: Optional[LLMSettings] = None,
    ):
        """Initialize the LLM client.

        Args:
            model: Default model in LiteLLM format. Falls back to settings.
            timeout: Request timeout in seconds. Falls back to settings.
            max_retries: Maximum retry attempts. Falls back to settings.
            llm_settings: LLM configuration. Uses get_settings() if None.
        """
        self._settings = llm_settings or get_settings().llm
        self._model = model or self._settings.get_default_model()
        self._timeout = timeout or self._settings.request_timeout
        self._max_retries = max_retries if max_retries is not None else self._settings.max_retries

        litellm.set_verbose = False
        litellm.drop_params = True

        logger.info(
            "LLMClient initialized with model=%s, timeout=%.1fs, max_retries=%d",
            self._model,
            self._timeout,
            self._max_retries,
        )

    @property
    def model(self) -> str:
        """Get the default model identifier."""
        return self._model

    def _get_provider_params(self, model: str) -> dict[str, Any]:
        """Get api_base/api_key for a model, passed straight to acompletion().

        Args:
            model: Model string in LiteLLM format.

        Returns:
            Dictionary with api_base and/or api_key if configured.
        """
        params: dict[str, Any] = {}
        if model.startswith(("ollama/", "ollama_chat/")):
            params["api_base"] = self._settings.ollama_base_url
            if self._settings.ollama_api_key:
                params["api_key"] = self._settings.ollama_api_key.get_secret_value()
        elif model.startswith(("claude", "anthropic/")):
            if self._settings.anthropic_api_key:
                params["api_key"] = self._settings.anthropic_api_key.get_secret_value()
        elif self._settings.openai_api_key:
            params["api_key"] = self._settings.openai_api_key.get_secret_value()
        return params

    async def complete(
        self,
        prompt: str,
        model: Optional[str] = None,
        system_prompt: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 1024,
        **kwargs,
    ) -> LLMResponse:
        """Generate a completion for the given prompt.

        Args:
            prompt: User prompt text.
            model: Override default model for this request.
            system_prompt: Optional system prompt to set context.
            temperature: Sampling temperature (0-2).
            max_tokens: Maximum tokens to generate.
            **kwargs: Additional LiteLLM parameters.

        Returns:
            LLMResponse with generated content and metadata.

        Raises:
            LLMError: If generation fails after retries.
            ValueError: If prompt is empty.
        """
        if not prompt or not prompt.strip():
            raise ValueError("Prompt cannot be empty")

        use_model = model or self._model

        chat_messages: list[dict[str, str]] = []
        if system_prompt:
            chat_messages.append({"role": "system", "content": system_prompt})
        chat_messages.append({"role": "user", "content": prompt})

        try:
            response = await acompletion(
                model=use_model,
                messages=chat_messages,
                temperature=temperature,
                max_tokens=max_tokens,
                timeout=self._timeout,
                num_retries=self._max_retries,
                **self._get_provider_params(use_model),
                **kwargs,
            )

            content = response.choices[0].message.content or ""
            finish_reason = response.choices[0].finish_reason or "stop"
            tokens_input = getattr(response.usage, "prompt_tokens", 0) or 0
            tokens_output = getattr(response.usage, "completion_tokens", 0) or 0

            logger.debug(
                "Completion generated: model=%s, tokens_in=%d, tokens_out=%d",
                use_model,
                tokens_input,
                tokens_output,
            )

            return LLMResponse(
                content=content,
                model=use_model,
                tokens_input=tokens_input,
                tokens_output=tokens_output,
                finish_reason=finish_reason,
                raw_response=response,
            )

        except Exception as e:
            logger.error(
                "Completion failed: model=%s, prompt_length=%d, error=%s",
                use_model,
                len(prompt),
                str(e),
            )
            raise LLMError(
                message=f"Completion failed: {str(e)}",
                model=use_model,
                original_error=e,
            ) from e
