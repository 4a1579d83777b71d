"""
OpenRouter text-generation client.

Single request/response completions used by the memory subsystem:
- Working-memory compression (task="summary")
- Session-end conversation tagging (task="tagging")

Every call is bounded by `llm_timeout`. Failures raise TextGenerationError so
the callers decide how to degrade.
"""

import asyncio
import httpx
import logging
from typing import Optional, Literal
from .config import get_settings

logger = logging.getLogger(__name__)

Task = Literal["summary", "tagging", "generic"]


class TextGenerationError(Exception):
    """The text-generation backend was unreachable, timed out, or returned nothing."""


class OpenRouterClient:
    def __init__(self):
        self.settings = get_settings()
        self.api_key = self.settings.openrouter_api_key
        self.model_summary = self.settings.openrouter_model_summary
        self.model_tagging = self.settings.openrouter_model_tagging
        self.model_fallback = self.settings.openrouter_model_fallback
        self.timeout = float(self.settings.llm_timeout)
        self.temperature = float(self.settings.llm_temperature)
        self.max_tokens = int(self.settings.llm_max_tokens)
        self.base_url = self.settings.openrouter_base_url.rstrip("/")

    async def complete(self, prompt: str, task: Task = "generic") -> str:
        """
        Run one completion.

        Returns:
            The completion text

        Raises:
            TextGenerationError: on HTTP error, timeout or empty reply
        """
        response = await self._call_llm(
            prompt=prompt,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            task=task
        )
        if not response:
            raise TextGenerationError(f"No completion returned for task={task}")
        return response

    def _model_for(self, task: Task) -> str:
        if task == "summary":
            return self.model_summary
        if task == "tagging":
            return self.model_tagging
        return self.model_fallback

    async def _call_llm(
        self,
        prompt: str,
        max_tokens: int = 1000,
        temperature: float = 0.5,
        task: Task = "generic"
    ) -> Optional[str]:
        """
        Make a request to the OpenRouter chat-completions API with timeout.

        Returns:
            Response text or None if call fails/times out
        """
        try:
            headers = {
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json"
            }

            payload = {
                "model": self._model_for(task),
                "messages": [
                    {"role": "system", "content": "You are a helpful assistant."},
                    {"role": "user", "content": prompt}
                ],
                "max_tokens": max_tokens,
                "temperature": temperature
            }

            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.base_url}/chat/completions",
                    headers=headers,
                    json=payload
                )

                if response.status_code == 200:
                    data = response.json()
                    return data["choices"][0]["message"]["content"]
                else:
                    logger.error(f"OpenRouter API error: {response.status_code} - {response.text}")
                    return None

        except (asyncio.TimeoutError, httpx.TimeoutException):
            logger.warning(f"LLM call timed out after {self.timeout}s (task={task})")
            return None
        except Exception as e:
            logger.error(f"LLM call failed (task={task}): {e}")
            return None


# Module-level instance
_client: Optional[OpenRouterClient] = None


def get_llm_client() -> OpenRouterClient:
    """Get or create the global LLM client"""
    global _client
    if _client is None:
        _client = OpenRouterClient()
    return _client
