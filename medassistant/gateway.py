import logging
from typing import Any, Dict, List, Optional

from openai import AsyncOpenAI

from medassistant.config import Settings
from medassistant.errors import ConfigurationError
from medassistant.prompts import MOCK_RESPONSE

logger = logging.getLogger(__name__)

MAX_TOKENS = 400
TEMPERATURE = 0.7


class CompletionGateway:
    """
    Thin wrapper over the chat completions endpoint. No retries: any
    failure from the API propagates to the caller as-is.
    """

    def __init__(self, settings: Settings, client: Optional[Any] = None):
        self.model = settings.model_name
        self.provider = settings.llm_provider
        self._api_key = settings.openai_api_key
        self._client = client

    @property
    def configured(self) -> bool:
        return self.provider == "mock" or self._client is not None or bool(self._api_key)

    def _openai_client(self) -> Any:
        if self._client is None:
            if not self._api_key:
                raise ConfigurationError(
                    "No se ha configurado correctamente la API de OpenAI",
                    details="OPENAI_API_KEY no está definida",
                )
            self._client = AsyncOpenAI(api_key=self._api_key)
        return self._client

    async def complete(self, messages: List[Dict[str, str]]) -> str:
        if self.provider == "mock":
            return MOCK_RESPONSE

        client = self._openai_client()
        logger.debug("Solicitando respuesta a %s (%d mensajes)", self.model, len(messages))
        completion = await client.chat.completions.create(
            model=self.model,
            messages=messages,
            max_tokens=MAX_TOKENS,
            temperature=TEMPERATURE,
        )
        return completion.choices[0].message.content or ""

    async def close(self) -> None:
        if self._client is not None and hasattr(self._client, "close"):
            await self._client.close()
