"""Concrete implementations for LLM providers used by the local service."""

import os
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterator, List, Optional

DEFAULT_SYSTEM_PROMPT = (
    "You are a professional assistant for video editors, directors and content "
    "creators. You know film history, editing techniques (jump cut, match cut, "
    "J-cut, L-cut), color grading, sound design, short-form formats (Shorts, "
    "TikTok, Reels), scriptwriting and camera gear. Answer in a structured way "
    "with practical examples, give exact facts when asked for dates or names, "
    "and reply in the user's language."
)


class LLM(ABC):
    """Abstract Base Class for streaming LLM providers."""

    @abstractmethod
    def generate_response(
        self, messages: List[Dict[str, Any]], model: Optional[str] = None, **kwargs: Any
    ) -> Any:
        """Starts a streaming generation.

        This method should return the provider's native stream object
        directly from their SDK.

        Parameters
        ----------
        messages : List[Dict[str, Any]]
            A list of ``{"role", "content"}`` dictionaries, system prompt first.
        model : str, optional
            The specific model to use for the generation.
        **kwargs : Any
            Provider-specific parameters passed directly to the SDK.

        Returns
        -------
        Any
            The provider's native stream object.
        """
        pass

    @abstractmethod
    def extract_deltas(self, response: Any) -> Iterator[str]:
        """Yields the text deltas of a native stream, skipping empty ones."""
        pass


class OpenAI(LLM):
    def __init__(self, default_model: str = "gpt-4o-mini", max_tokens: int = 2048):
        from openai import OpenAI

        self.client = OpenAI(
            api_key=os.environ.get("OPENAI_API_KEY"),
            base_url=os.environ.get("OPENAI_BASE_URL"),
        )
        self.model = default_model
        self.max_tokens = max_tokens

    def generate_response(self, messages, model=None, **kwargs):
        kwargs.setdefault("max_completion_tokens", self.max_tokens)
        return self.client.chat.completions.create(
            messages=messages, model=model or self.model, stream=True, **kwargs
        )

    def extract_deltas(self, response: Any) -> Iterator[str]:
        for chunk in response:
            if not chunk.choices:
                continue
            content = chunk.choices[0].delta.content
            if content:
                yield content


class Echo(LLM):
    """Streams the user's prompt back word by word. Useful for tests and demos."""

    def __init__(self, default_model: str = "echo-v1", delay: float = 0.0):
        self.model = default_model
        self.delay = delay

    def generate_response(self, messages, model=None, **kwargs):
        user_prompt = messages[-1]["content"] if messages else "No message provided"
        return f"Echo: {user_prompt}"

    def extract_deltas(self, response: Any) -> Iterator[str]:
        words = str(response).split(" ")
        for i, word in enumerate(words):
            if self.delay:
                time.sleep(self.delay)
            yield word if i == 0 else f" {word}"
