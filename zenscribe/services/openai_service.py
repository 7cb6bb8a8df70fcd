from typing import Dict, List, Optional

import httpx
import openai
from openai import AsyncOpenAI
from loguru import logger
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from zenscribe.core.config import settings
from zenscribe.core.exceptions import ExternalServiceError, UpstreamConfigError


class OpenAIService:
    """
    Service wrapper for OpenAI chat completions

    Provides a consistent interface for chat completion calls with proper
    error handling, retries, and response formatting.
    """

    def __init__(self, api_key: Optional[str] = None, client: Optional[AsyncOpenAI] = None):
        self.api_key = api_key or settings.transcription_api_key
        self.is_configured = bool(self.api_key) and not self.api_key.startswith("your-")
        self.chat_model = settings.OPENAI_CHAT_MODEL
        self._client = client

        logger.info(f"OpenAI service initialized with API key configured: {self.is_configured}")

    @property
    def async_client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self.api_key, max_retries=0)
        return self._client

    def _check_configuration(self) -> None:
        """
        Check if the API key is configured

        Raises:
            UpstreamConfigError: If API key is not properly configured
        """
        if not self.is_configured:
            logger.error("OpenAI API key is not configured")
            raise UpstreamConfigError("OpenAI")

    async def create_chat_completion(
            self,
            messages: List[Dict[str, str]],
            max_tokens: Optional[int] = None,
            temperature: float = 0.7,
            model: Optional[str] = None,
            json_response: bool = False,
    ) -> str:
        """
        Create a chat completion

        Args:
            messages: List of messages in the conversation
            max_tokens: Maximum tokens to generate
            temperature: Sampling temperature (0-1)
            model: Optional model override
            json_response: Ask the model for a JSON object

        Returns:
            Generated text

        Raises:
            UpstreamConfigError: If the API key is missing
            ExternalServiceError: If there's an error with the OpenAI API
        """
        self._check_configuration()

        try:
            return await self._complete(messages, max_tokens, temperature, model or self.chat_model, json_response)
        except (openai.APIConnectionError, httpx.HTTPError) as e:
            error_msg = f"HTTP error in chat completion: {str(e)}"
            logger.error(error_msg)
            raise ExternalServiceError("OpenAI", error_msg)
        except openai.APIStatusError as e:
            error_msg = f"OpenAI returned {e.status_code}: {e.message}"
            logger.error(error_msg)
            raise ExternalServiceError("OpenAI", error_msg)

    @retry(
        stop=stop_after_attempt(settings.OPENAI_MAX_RETRIES),
        wait=wait_exponential(multiplier=settings.OPENAI_RETRY_DELAY, min=1, max=60),
        retry=retry_if_exception_type((openai.APIConnectionError, httpx.TransportError)),
        reraise=True,
    )
    async def _complete(
            self,
            messages: List[Dict[str, str]],
            max_tokens: Optional[int],
            temperature: float,
            model: str,
            json_response: bool,
    ) -> str:
        kwargs = {}
        if json_response:
            kwargs["response_format"] = {"type": "json_object"}

        response = await self.async_client.chat.completions.create(
            model=model,
            messages=messages,
            max_tokens=max_tokens,
            temperature=temperature,
            **kwargs,
        )
        return response.choices[0].message.content or ""


# Create singleton instance
openai_service = OpenAIService()
