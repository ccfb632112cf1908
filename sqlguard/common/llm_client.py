"""
Async client for the Generative Model Provider.

One interface over Anthropic, OpenAI and Google Gemini. Each provider has a
connect step (SDK import + credentials) and a generate coroutine; the SDKs
are imported lazily so only the configured provider needs to be installed.
"""

from __future__ import annotations

import hashlib
import logging
from typing import Any, Dict, Optional

from .errors import ProviderUnavailable

logger = logging.getLogger("sqlguard.common.llm_client")

MAX_TEMPERATURE = 1.0
MAX_OUTPUT_TOKENS = 4096

SUPPORTED_PROVIDERS = ("anthropic", "openai", "google")


class LLMClient:
    """Unified async text generation across LLM providers."""

    def __init__(
        self,
        provider: str = "anthropic",
        model: str = "",
        anthropic_api_key: Optional[str] = None,
        openai_api_key: Optional[str] = None,
        google_api_key: Optional[str] = None,
    ) -> None:
        self.provider = (provider or "anthropic").lower()
        self.model = model
        self._client: Any = None
        self._models: Dict[str, Any] = {}

        if self.provider == "auto":
            raise ValueError(
                'Provider "auto" is not a concrete provider; choose one of '
                + ", ".join(SUPPORTED_PROVIDERS)
            )
        if self.provider not in SUPPORTED_PROVIDERS:
            logger.warning("Unsupported LLM provider: %s", self.provider)
            return

        api_key = {
            "anthropic": anthropic_api_key,
            "openai": openai_api_key,
            "google": google_api_key,
        }[self.provider]
        if not api_key:
            logger.info("%s API key not provided, LLM client unavailable", self.provider)
            return

        connect = getattr(self, f"_connect_{self.provider}")
        try:
            self._client = connect(api_key)
        except ImportError as e:
            logger.warning("SDK for %s is not installed: %s", self.provider, e)
        except Exception as e:
            logger.warning("Could not create %s client: %s", self.provider, e)

    @property
    def is_available(self) -> bool:
        return self._client is not None

    # Connect steps ---------------------------------------------------------

    @staticmethod
    def _connect_anthropic(api_key: str):
        import anthropic

        return anthropic.AsyncAnthropic(api_key=api_key)

    @staticmethod
    def _connect_openai(api_key: str):
        from openai import AsyncOpenAI

        return AsyncOpenAI(api_key=api_key)

    @staticmethod
    def _connect_google(api_key: str):
        import google.generativeai as genai

        genai.configure(api_key=api_key)
        return genai

    # Generation --------------------------------------------------------------

    async def generate(
        self,
        prompt: str,
        *,
        system: Optional[str] = None,
        temperature: float = 0.2,
        max_tokens: int = 512,
        timeout: float = 30.0,
    ) -> str:
        """
        Generate a completion for a single user prompt.

        Temperature is clamped to [0, 1] and max_tokens to [1, 4096].

        Raises:
            ProviderUnavailable: no usable client for the configured provider
        """
        if not self.is_available:
            raise ProviderUnavailable("LLM client is not available")

        generate = getattr(self, f"_generate_{self.provider}", None)
        if generate is None:
            raise ProviderUnavailable(f"Unsupported LLM provider: {self.provider}")

        settings = {
            "system": system,
            "temperature": max(0.0, min(MAX_TEMPERATURE, temperature)),
            "max_tokens": max(1, min(MAX_OUTPUT_TOKENS, max_tokens)),
            "timeout": timeout,
        }
        text = await generate(prompt, **settings)
        return (text or "").strip()

    async def _generate_anthropic(self, prompt, *, system, temperature, max_tokens, timeout):
        extra = {"system": system} if system else {}
        response = await self._client.messages.create(
            model=self.model,
            messages=[{"role": "user", "content": prompt}],
            temperature=temperature,
            max_tokens=max_tokens,
            timeout=timeout,
            **extra,
        )
        return response.content[0].text

    async def _generate_openai(self, prompt, *, system, temperature, max_tokens, timeout):
        messages = [{"role": "system", "content": system}] if system else []
        messages.append({"role": "user", "content": prompt})
        response = await self._client.chat.completions.create(
            model=self.model,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
            timeout=timeout,
        )
        return response.choices[0].message.content

    async def _generate_google(self, prompt, *, system, temperature, max_tokens, timeout):
        # GenerativeModel binds the system instruction, so cache one per prompt
        key = hashlib.md5((system or "").encode()).hexdigest()
        model = self._models.get(key)
        if model is None:
            options = {"model_name": self.model}
            if system:
                options["system_instruction"] = system
            model = self._models[key] = self._client.GenerativeModel(**options)
        response = await model.generate_content_async(
            prompt,
            generation_config={"temperature": temperature, "max_output_tokens": max_tokens},
            request_options={"timeout": timeout},
        )
        return response.text
