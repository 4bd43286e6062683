"""
LLM transports for batch scoring.
Each transport sends one system/user prompt pair and returns the raw reply text.
"""

from abc import ABC, abstractmethod
from typing import Dict, List

import ollama
import requests


SCORING_TEMPERATURE = 0.1


class LLMTransport(ABC):
    """Abstract interface for a single synchronous chat completion call."""

    @abstractmethod
    def complete(self, system_prompt: str, user_prompt: str) -> str:
        """Send the prompts and return the reply content. Raises on failure."""
        pass


def _build_messages(system_prompt: str, user_prompt: str) -> List[Dict[str, str]]:
    return [
        {'role': 'system', 'content': system_prompt},
        {'role': 'user', 'content': user_prompt},
    ]


class OpenAICompatibleTransport(LLMTransport):
    """OpenAI-compatible /chat/completions endpoint with Bearer auth."""

    def __init__(self, base_url: str, api_key: str, model: str, timeout: float = 60.0, session=None):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.session = session or requests.Session()

    def complete(self, system_prompt: str, user_prompt: str) -> str:
        response = self.session.post(
            f"{self.base_url}/chat/completions",
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self.api_key}",
            },
            json={
                "model": self.model,
                "messages": _build_messages(system_prompt, user_prompt),
                "temperature": SCORING_TEMPERATURE,
            },
            timeout=self.timeout,
        )

        if not response.ok:
            raise RuntimeError(f"LLM API error: {response.status_code} - {response.text[:200]}")

        data = response.json()
        choices = data.get("choices") or []
        content = choices[0].get("message", {}).get("content") if choices else None
        if not content:
            raise RuntimeError("No content in LLM response")

        return content


class OllamaTransport(LLMTransport):
    """Local Ollama chat model."""

    def __init__(self, host: str, model: str, timeout: float = 60.0, client=None):
        self.model = model
        self.client = client or ollama.Client(host=host, timeout=timeout)

    def complete(self, system_prompt: str, user_prompt: str) -> str:
        try:
            response = self.client.chat(
                model=self.model,
                messages=_build_messages(system_prompt, user_prompt),
                options={'temperature': SCORING_TEMPERATURE},
            )
        except ollama.ResponseError as e:
            raise RuntimeError(f"Ollama model error: {e}") from e

        content = response.get('message', {}).get('content', '')
        if not content:
            raise RuntimeError("No content in Ollama response")

        return content
