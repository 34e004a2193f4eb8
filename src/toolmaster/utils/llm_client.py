"""LLM client wrapper for Gemini via its OpenAI-compatible API."""

from dataclasses import dataclass, field
from typing import AsyncIterator, Optional

import openai
import structlog
from openai import AsyncOpenAI

from toolmaster.config import settings
from toolmaster.errors import ConfigurationError, RemoteCallError

logger = structlog.get_logger(__name__)

# Module-level clients, one per API key (lazy initialized)
_clients: dict[str, "GenAIClient"] = {}


@dataclass
class Conversation:
    """Remote conversation context: system instruction plus prior turns."""

    system_instruction: str
    model: str
    history: list[dict[str, str]] = field(default_factory=list)

    def to_messages(self, user_text: str) -> list[dict[str, str]]:
        return (
            [{"role": "system", "content": self.system_instruction}]
            + list(self.history)
            + [{"role": "user", "content": user_text}]
        )

    def record_turn(self, user_text: str, reply: str) -> None:
        self.history.append({"role": "user", "content": user_text})
        self.history.append({"role": "assistant", "content": reply})


def _translate_error(e: Exception, model: str) -> Exception:
    """Map client exceptions onto the workspace error taxonomy."""
    if isinstance(e, (openai.AuthenticationError, openai.PermissionDeniedError)):
        logger.error("LLM credential rejected", model=model, error=str(e))
        return ConfigurationError("API key was rejected. Please set a valid key.")
    logger.error("LLM call failed", model=model, error=str(e))
    return RemoteCallError(str(e))


class GenAIClient:
    """Thin async adapter: create_conversation / send_streaming / send_once."""

    def __init__(
        self,
        api_key: str,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self._client = AsyncOpenAI(
            api_key=api_key,
            base_url=base_url or settings.gemini_base_url,
            timeout=timeout or settings.request_timeout,
        )

    def create_conversation(
        self,
        system_instruction: str,
        prior_turns: list[dict[str, str]],
        model: Optional[str] = None,
    ) -> Conversation:
        return Conversation(
            system_instruction=system_instruction,
            model=model or settings.chat_model,
            history=list(prior_turns),
        )

    async def send_streaming(
        self,
        conversation: Conversation,
        text: str,
        temperature: Optional[float] = None,
    ) -> AsyncIterator[str]:
        """
        Stream the reply to text as it arrives.

        Yields:
            Non-empty text fragments in arrival order. The exchange is
            recorded in the conversation only once the stream completes.

        Raises:
            ConfigurationError: The credential was rejected.
            RemoteCallError: Any other transport or remote failure.
        """
        temperature = temperature if temperature is not None else settings.chat_temperature
        received: list[str] = []

        try:
            stream = await self._client.chat.completions.create(
                model=conversation.model,
                messages=conversation.to_messages(text),
                temperature=temperature,
                stream=True,
            )
            async with stream:
                async for chunk in stream:
                    if not chunk.choices:
                        continue
                    fragment = chunk.choices[0].delta.content
                    if fragment:
                        received.append(fragment)
                        yield fragment
        except Exception as e:
            raise _translate_error(e, conversation.model) from e

        reply = "".join(received)
        conversation.record_turn(text, reply)
        logger.debug(
            "LLM stream complete",
            model=conversation.model,
            fragments=len(received),
            response_length=len(reply),
        )

    async def send_once(
        self,
        prompt: str,
        system_instruction: str,
        model: Optional[str] = None,
    ) -> str:
        """
        Single-shot call with no retained history.

        Returns:
            The full response text (possibly empty).
        """
        model = model or settings.plugin_model

        try:
            response = await self._client.chat.completions.create(
                model=model,
                messages=[
                    {"role": "system", "content": system_instruction},
                    {"role": "user", "content": prompt},
                ],
            )
            result = response.choices[0].message.content or ""
        except Exception as e:
            raise _translate_error(e, model) from e

        logger.debug("LLM call successful", model=model, response_length=len(result))
        return result


def get_llm_client(api_key: str) -> GenAIClient:
    """
    Get or create the client for an API key.

    Raises:
        ConfigurationError: If the key is blank.
    """
    if not api_key or not api_key.strip():
        raise ConfigurationError("API key is missing. Please set it first.")

    client = _clients.get(api_key)
    if client is None:
        client = GenAIClient(api_key=api_key)
        _clients[api_key] = client
    return client
