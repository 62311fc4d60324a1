"""Multi-provider LLM client returning raw completion text."""

from __future__ import annotations

import logging

import anthropic
import openai

from qualmatrix.config import QualmatrixSettings
from qualmatrix.errors import (
    LLMConfigurationError,
    LLMConnectionError,
    LLMStatusError,
    LLMTransportError,
)
from qualmatrix.providers import PROVIDERS, missing_config

logger = logging.getLogger(__name__)

# Statuses that mean "fix your settings", not "try again later"
_CONFIG_STATUSES = frozenset({401, 403, 404})


class LLMUsageTracker:
    """Accumulates token usage across multiple LLM calls.

    Safe to share across concurrent asyncio tasks (single-threaded event loop).
    """

    def __init__(self) -> None:
        self.input_tokens: int = 0
        self.output_tokens: int = 0
        self.calls: int = 0

    def record(self, input_tokens: int, output_tokens: int) -> None:
        """Record token usage from a single API call."""
        self.input_tokens += input_tokens
        self.output_tokens += output_tokens
        self.calls += 1

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class LLMClient:
    """One-shot completion against Azure OpenAI, ChatGPT, Claude or Ollama.

    Sends a single request per call; there is no retry loop.  The response
    text is returned as-is, including fences or truncated JSON, for the
    validator to repair.  SDK failures are translated into the
    :class:`~qualmatrix.errors.LLMTransportError` family.
    """

    def __init__(self, settings: QualmatrixSettings) -> None:
        self.settings = settings
        self.provider = settings.llm_provider
        self._anthropic_client: object | None = None
        self._openai_client: object | None = None
        self.tracker = LLMUsageTracker()

        self._validate_config()

    def _validate_config(self) -> None:
        """Check that the selected provider has what it needs to connect."""
        spec = PROVIDERS.get(self.provider)
        if spec is None:
            raise LLMConfigurationError(
                f"Unsupported LLM provider: {self.provider}. "
                f"Choose one of: {', '.join(sorted(PROVIDERS))}"
            )
        missing = missing_config(self.provider, self.settings)
        if missing:
            raise LLMConfigurationError(
                f"{spec.display_name} is not configured. "
                f"Set {', '.join(missing)} in your .env file or environment."
            )

    @property
    def model_name(self) -> str:
        return str(getattr(self.settings, PROVIDERS[self.provider].model_setting))

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int | None = None,
    ) -> str:
        """Send one prompt pair and return the model's text.

        Args:
            system_prompt: System-level instructions.
            user_prompt: The composed analysis prompt.
            max_tokens: Override max tokens (defaults to settings.llm_max_tokens).

        Returns:
            The completion text; ``""`` when the model returned no content.

        Raises:
            LLMConnectionError: The endpoint could not be reached or timed out.
            LLMConfigurationError: Credentials, endpoint or deployment are wrong.
            LLMStatusError: Any other non-2xx response.
        """
        max_tokens = max_tokens or self.settings.llm_max_tokens
        logger.info(
            "Calling %s: model=%s prompt_chars=%d",
            self.provider,
            self.model_name,
            len(system_prompt) + len(user_prompt),
        )

        try:
            if PROVIDERS[self.provider].sdk_module == "anthropic":
                return await self._complete_anthropic(system_prompt, user_prompt, max_tokens)
            return await self._complete_openai(system_prompt, user_prompt, max_tokens)
        except (openai.APIConnectionError, anthropic.APIConnectionError) as exc:
            # APITimeoutError subclasses APIConnectionError in both SDKs
            raise LLMConnectionError(
                f"Could not reach the {self._display_name} endpoint: {exc}. "
                "Check your network connection and endpoint URL."
            ) from exc
        except (openai.APIStatusError, anthropic.APIStatusError) as exc:
            raise self._status_error(exc) from exc

    @property
    def _display_name(self) -> str:
        return PROVIDERS[self.provider].display_name

    def _status_error(self, exc: openai.APIStatusError | anthropic.APIStatusError) -> LLMTransportError:
        status = exc.status_code
        if status in _CONFIG_STATUSES:
            hint = {
                401: "the API key was rejected",
                403: "the API key lacks permission for this model",
                404: f"model or deployment '{self.model_name}' was not found",
            }[status]
            return LLMConfigurationError(
                f"{self._display_name} request failed ({status}): {hint}. "
                "Check your provider settings."
            )
        return LLMStatusError(
            f"{self._display_name} returned HTTP {status}: {exc.message}",
            status_code=status,
        )

    # -- providers ----------------------------------------------------------

    def _get_openai_client(self) -> openai.AsyncOpenAI:
        if self._openai_client is None:
            if self.provider == "azure":
                self._openai_client = openai.AsyncAzureOpenAI(
                    api_key=self.settings.azure_api_key,
                    azure_endpoint=self.settings.azure_endpoint,
                    api_version=self.settings.azure_api_version,
                )
            elif self.provider == "local":
                self._openai_client = openai.AsyncOpenAI(
                    base_url=self.settings.local_url,
                    api_key="ollama",  # Required by SDK but ignored by Ollama
                )
            else:
                self._openai_client = openai.AsyncOpenAI(
                    api_key=self.settings.openai_api_key,
                )
        return self._openai_client  # type: ignore[return-value]

    async def _complete_openai(
        self, system_prompt: str, user_prompt: str, max_tokens: int
    ) -> str:
        """Chat completion for Azure, OpenAI and Ollama (all OpenAI-compatible)."""
        client = self._get_openai_client()

        response = await client.chat.completions.create(
            model=self.model_name,
            max_tokens=max_tokens,
            temperature=self.settings.llm_temperature,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
        )

        if getattr(response, "usage", None):
            self.tracker.record(
                response.usage.prompt_tokens or 0,
                response.usage.completion_tokens or 0,
            )

        choice = response.choices[0]
        if choice.finish_reason == "length":
            logger.warning(
                "%s response truncated at max_tokens=%d; the matrix may be incomplete",
                self._display_name,
                max_tokens,
            )
        return choice.message.content or ""

    async def _complete_anthropic(
        self, system_prompt: str, user_prompt: str, max_tokens: int
    ) -> str:
        if self._anthropic_client is None:
            self._anthropic_client = anthropic.AsyncAnthropic(
                api_key=self.settings.anthropic_api_key,
            )

        client: anthropic.AsyncAnthropic = self._anthropic_client  # type: ignore[assignment]

        response = await client.messages.create(
            model=self.settings.llm_model,
            max_tokens=max_tokens,
            temperature=self.settings.llm_temperature,
            system=system_prompt,
            messages=[{"role": "user", "content": user_prompt}],
        )

        if getattr(response, "usage", None):
            self.tracker.record(response.usage.input_tokens, response.usage.output_tokens)

        if response.stop_reason == "max_tokens":
            logger.warning(
                "Claude response truncated at max_tokens=%d; the matrix may be incomplete",
                max_tokens,
            )
        return "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        )
