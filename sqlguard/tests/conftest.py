"""Shared fakes for the embedding and generative model providers."""

import asyncio
import json
import re
import zlib

import pytest


class FakeEmbeddingService:
    """Hashed bag-of-words embeddings: identical token sets embed identically."""

    def __init__(self, dimension: int = 64, available: bool = True, error: Exception = None):
        self._dimension = dimension
        self._available = available
        self.error = error
        self.calls = 0

    @property
    def is_available(self) -> bool:
        return self._available

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def model_name(self) -> str:
        return "fake-hash-64"

    def vector(self, text: str):
        vec = [0.0] * self._dimension
        for token in re.findall(r"[a-z0-9]+", text.lower()):
            vec[zlib.crc32(token.encode()) % self._dimension] += 1.0
        return vec

    async def embed(self, texts):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return [self.vector(t) for t in texts]

    async def embed_single(self, text):
        return (await self.embed([text]))[0]


class FakeLLM:
    """Generative model stand-in returning a canned answer."""

    def __init__(self, answer: str = "", error: Exception = None, delay: float = 0.0):
        self.answer = answer
        self.error = error
        self.delay = delay
        self.prompts = []
        self.kwargs = []
        self.is_available = True

    async def generate(self, prompt, **kwargs):
        self.prompts.append(prompt)
        self.kwargs.append(kwargs)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.answer


def verdict_json(vulnerable=True, severity="high", **extra) -> str:
    body = {
        "vulnerable": vulnerable,
        "severity": severity,
        "attack_types": extra.pop("attack_types", ["boolean_tautology"]),
        "recommendations": extra.pop("recommendations", ["Use parameterized queries"]),
        "explanation": extra.pop("explanation", "Always-true condition bypasses the filter."),
    }
    body.update(extra)
    return json.dumps(body)


@pytest.fixture
def fake_embedding():
    return FakeEmbeddingService()


@pytest.fixture
def vulnerable_llm():
    return FakeLLM(answer=verdict_json())


@pytest.fixture
def no_sleep():
    """Backoff sleep that records delays instead of waiting."""
    delays = []

    async def _sleep(delay):
        delays.append(delay)

    _sleep.delays = delays
    return _sleep
