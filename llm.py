"""
Chat completions client used by the assistant.

The client is built from an explicit LLMConfig so tests can swap in a fake
generator; any object with a `generate(messages) -> str` method will do.
"""
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol

import requests

from config import Settings
from errors import UpstreamFailure

logger = logging.getLogger(__name__)


class TextGenerator(Protocol):
    def generate(self, messages: List[Dict[str, str]]) -> str:
        ...


@dataclass(frozen=True)
class LLMConfig:
    api_key: str
    model: str = "gpt-4o-mini"
    base_url: str = "https://api.openai.com/v1"
    max_tokens: int = 800
    temperature: float = 0.7
    timeout: int = 30

    @classmethod
    def from_settings(cls, settings: Settings) -> "LLMConfig":
        return cls(
            api_key=settings.openai_api_key,
            model=settings.openai_model,
            base_url=settings.openai_base_url,
            max_tokens=settings.openai_max_tokens,
            temperature=settings.openai_temperature,
            timeout=settings.openai_timeout,
        )


class OpenAIChatClient:
    def __init__(self, config: LLMConfig, session: Optional[requests.Session] = None):
        self.config = config
        self.session = session or requests.Session()

    def generate(self, messages: List[Dict[str, str]]) -> str:
        """POST the messages and return the first choice's text.

        Raises UpstreamFailure on transport errors, non-2xx replies and
        replies without a message.
        """
        url = self.config.base_url.rstrip("/") + "/chat/completions"
        payload = {
            "model": self.config.model,
            "messages": messages,
            "max_tokens": self.config.max_tokens,
            "temperature": self.config.temperature,
            "presence_penalty": 0.6,
            "frequency_penalty": 0.3,
        }
        headers = {"Authorization": f"Bearer {self.config.api_key}"}
        logger.info("Calling chat completions model=%s", self.config.model)
        try:
            response = self.session.post(url, json=payload, headers=headers, timeout=self.config.timeout)
        except requests.RequestException as e:
            raise UpstreamFailure(f"Text generation request failed: {e}") from e

        if not response.ok:
            raise UpstreamFailure(f"Text generation returned HTTP {response.status_code}: {response.text[:200]}")

        try:
            data = response.json()
            content = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise UpstreamFailure("Unexpected text generation response format") from e
        if not isinstance(content, str) or not content.strip():
            raise UpstreamFailure("Text generation returned an empty message")
        return content.strip()


def build_text_generator(settings: Settings) -> Optional[TextGenerator]:
    """None when no API key is configured; callers then use canned replies."""
    if not settings.openai_api_key:
        return None
    return OpenAIChatClient(LLMConfig.from_settings(settings))
