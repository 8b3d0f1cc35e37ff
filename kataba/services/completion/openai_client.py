from collections.abc import Sequence

import httpx
import structlog

from kataba.config import settings
from kataba.core.exceptions import CompletionProviderError
from kataba.services.completion.base import CompletionProvider, CompletionResult, RoleContent
from kataba.services.completion.persona import (
    DEFAULT_LANGUAGE,
    LANGUAGE_DETECTION_PROMPT,
    normalize_language,
    system_prompt,
)

logger = structlog.get_logger()


class OpenAICompletionProvider(CompletionProvider):
    """Chat completions against an OpenAI-compatible HTTP API."""

    def __init__(
        self,
        base_url: str,
        api_key: str | None,
        model: str,
        http_client: httpx.AsyncClient | None = None,
        api_prefix: str = "/v1",
        detect_language: bool = False,
        temperature: float = 0.7,
        max_tokens: int = 1200,
        top_p: float = 0.9,
        frequency_penalty: float = 0.3,
        presence_penalty: float = 0.5,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.model = model
        self._api_prefix = api_prefix.rstrip("/")
        self._detect_language = detect_language
        self._params = {
            "temperature": temperature,
            "max_tokens": max_tokens,
            "top_p": top_p,
            "frequency_penalty": frequency_penalty,
            "presence_penalty": presence_penalty,
        }
        self._headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(
                connect=settings.kataba_http_connect_timeout,
                read=settings.kataba_completion_timeout,
                write=5.0,
                pool=5.0,
            )
        )

    @classmethod
    def from_settings(cls, http_client: httpx.AsyncClient | None = None) -> "OpenAICompletionProvider":
        return cls(
            base_url=settings.openai_base_url,
            api_key=settings.openai_api_key,
            model=settings.openai_model,
            http_client=http_client,
            api_prefix=settings.openai_api_prefix,
            detect_language=settings.kataba_language_detection,
            temperature=settings.openai_temperature,
            max_tokens=settings.openai_max_tokens,
            top_p=settings.openai_top_p,
            frequency_penalty=settings.openai_frequency_penalty,
            presence_penalty=settings.openai_presence_penalty,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def complete(
        self, messages: Sequence[RoleContent], language: str | None = None
    ) -> CompletionResult:
        """Prepend the persona and return the first choice's text."""
        detected = None
        if language is None and self._detect_language:
            last_user = next((m.content for m in reversed(messages) if m.role == "user"), "")
            detected = await self.detect_language(last_user)
            language = detected

        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt(normalize_language(language))},
                *(
                    {"role": m.role, "content": m.content}
                    for m in messages
                    if m.role in ("user", "assistant")
                ),
            ],
            **self._params,
        }
        data = await self._post_chat(payload)
        return CompletionResult(content=self._first_choice_text(data), detected_language=detected)

    async def detect_language(self, text: str) -> str:
        """Classify text into a supported language code; English on any failure."""
        if not text.strip():
            return DEFAULT_LANGUAGE
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": LANGUAGE_DETECTION_PROMPT},
                {"role": "user", "content": text},
            ],
            "temperature": 0.1,
            "max_tokens": 10,
        }
        try:
            data = await self._post_chat(payload)
            return normalize_language(self._first_choice_text(data))
        except CompletionProviderError as e:
            logger.warning("language_detection_failed", error=str(e))
            return DEFAULT_LANGUAGE

    async def health_check(self) -> bool:
        """Configured and the models endpoint answers."""
        if not self.is_configured:
            return False
        try:
            response = await self._client.get(
                f"{self.base_url}{self._api_prefix}/models", headers=self._headers
            )
            return response.status_code == 200
        except (httpx.ConnectError, httpx.TimeoutException):
            return False

    async def close(self):
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def _post_chat(self, payload: dict) -> dict:
        url = f"{self.base_url}{self._api_prefix}/chat/completions"
        try:
            response = await self._client.post(url, json=payload, headers=self._headers)
            response.raise_for_status()
            return response.json()
        except httpx.ConnectError as e:
            raise CompletionProviderError(f"Cannot connect to completion API at {self.base_url}: {e}")
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status == 401:
                reason = "authentication failed"
            elif status == 429:
                reason = "rate limited"
            else:
                reason = "upstream error"
            raise CompletionProviderError(f"Completion API {reason}: {status}", status_code=status)
        except httpx.TimeoutException:
            raise CompletionProviderError("Completion API request timed out.")
        except httpx.HTTPError as e:
            raise CompletionProviderError(f"Completion API request failed: {e}")
        except ValueError:
            raise CompletionProviderError("Completion API returned a malformed body.")

    @staticmethod
    def _first_choice_text(data: dict) -> str:
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            raise CompletionProviderError("Completion API response has no choices.")
        return content or ""
