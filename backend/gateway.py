"""Boundary calls: text generation (Anthropic) and speech synthesis (ElevenLabs)."""
import logging
from typing import Optional

import anthropic
import httpx

import config
from models import ChatMessage

logger = logging.getLogger(__name__)

ELEVENLABS_TTS_URL = "https://api.elevenlabs.io/v1/text-to-speech/{voice_id}"
TTS_TIMEOUT = httpx.Timeout(connect=5.0, read=30.0, write=10.0, pool=5.0)


class UpstreamError(Exception):
    """A boundary call failed or returned something unusable."""


class CredentialError(UpstreamError):
    """The boundary call is missing a key or the key was rejected."""


def to_api_messages(history: list[ChatMessage]) -> list[dict]:
    """
    Convert the transcript to the Messages API shape.
    The API wants a user turn first and alternating roles, so leading assistant
    messages are dropped and consecutive same-role messages are joined.
    """
    messages: list[dict] = []
    for message in history:
        if not messages and message.role != "user":
            continue
        if messages and messages[-1]["role"] == message.role:
            messages[-1]["content"] += "\n\n" + message.content
        else:
            messages.append({"role": message.role, "content": message.content})
    return messages


class ModelGateway:
    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        client: Optional[anthropic.AsyncAnthropic] = None,
    ):
        self.api_key = config.ANTHROPIC_API_KEY if api_key is None else api_key
        self.model = model or config.ASSISTANT_MODEL
        self.max_tokens = max_tokens or config.ASSISTANT_MAX_TOKENS
        self._client = client

    @property
    def client(self) -> anthropic.AsyncAnthropic:
        if self._client is None:
            if not config.has_key(self.api_key):
                raise CredentialError("API key not configured")
            self._client = anthropic.AsyncAnthropic(api_key=self.api_key)
        return self._client

    async def complete(self, system_prompt: str, history: list[ChatMessage]) -> str:
        """Send the system prompt and transcript, return the model's text."""
        messages = to_api_messages(history)
        if not messages:
            raise UpstreamError("No user message to send")
        try:
            response = await self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                system=system_prompt,
                messages=messages,
            )
        except anthropic.AuthenticationError as e:
            raise CredentialError(f"Invalid API key: {e}") from e
        except anthropic.APIError as e:
            raise UpstreamError(f"API error: {e}") from e

        text = "".join(block.text for block in response.content if block.type == "text")
        if not text.strip():
            raise UpstreamError("Model returned an empty response")
        logger.debug("Model response: %s", text)
        return text


class SpeechSynthesizer:
    def __init__(
        self,
        api_key: Optional[str] = None,
        voice_id: Optional[str] = None,
        model_id: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = config.ELEVENLABS_API_KEY if api_key is None else api_key
        self.voice_id = voice_id or config.ELEVENLABS_VOICE_ID
        self.model_id = model_id or config.ELEVENLABS_MODEL_ID
        self._client = client

    async def synthesize(self, text: str, voice_id: Optional[str] = None) -> bytes:
        """MP3 audio for text."""
        if not config.has_key(self.api_key):
            raise CredentialError("Premium voice not configured on server")

        client = self._client or httpx.AsyncClient(timeout=TTS_TIMEOUT)
        try:
            response = await client.post(
                ELEVENLABS_TTS_URL.format(voice_id=voice_id or self.voice_id),
                headers={"Accept": "audio/mpeg", "xi-api-key": self.api_key},
                json={
                    "text": text,
                    "model_id": self.model_id,
                    "voice_settings": {"stability": 0.5, "similarity_boost": 0.75},
                },
            )
        except httpx.HTTPError as e:
            raise UpstreamError(f"ElevenLabs request failed: {e}") from e
        finally:
            if self._client is None:
                await client.aclose()

        if response.status_code in (401, 403):
            raise CredentialError(f"ElevenLabs rejected the API key ({response.status_code})")
        if not response.is_success:
            raise UpstreamError(f"ElevenLabs API error: {response.status_code}")
        if not response.content:
            raise UpstreamError("ElevenLabs returned no audio")
        return response.content
