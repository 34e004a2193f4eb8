"""Fake remote AI client used by the workspace and engine tests."""

import asyncio
from typing import Optional

from toolmaster.utils.llm_client import Conversation


class FakeClient:
    """Stands in for GenAIClient; replays canned fragments or a canned reply."""

    def __init__(
        self,
        fragments: Optional[list[str]] = None,
        reply: str = "",
        error: Optional[Exception] = None,
        fail_after: Optional[int] = None,
    ):
        self.fragments = fragments or []
        self.reply = reply
        self.error = error
        self.fail_after = fail_after
        self.gate: Optional[asyncio.Event] = None
        self.api_keys: list[str] = []
        self.conversations: list[Conversation] = []
        self.sent: list[str] = []
        self.prompts: list[str] = []
        self.streams_closed = 0

    def factory(self, api_key: str) -> "FakeClient":
        self.api_keys.append(api_key)
        return self

    def create_conversation(self, system_instruction, prior_turns, model=None):
        conversation = Conversation(
            system_instruction=system_instruction,
            model=model or "fake-model",
            history=list(prior_turns),
        )
        self.conversations.append(conversation)
        return conversation

    async def send_streaming(self, conversation, text, temperature=None):
        self.sent.append(text)
        try:
            if self.gate is not None:
                await self.gate.wait()
            for i, fragment in enumerate(self.fragments):
                if self.fail_after is not None and i >= self.fail_after:
                    raise self.error
                await asyncio.sleep(0)
                yield fragment
            if self.error is not None and self.fail_after is None:
                raise self.error
            conversation.record_turn(text, "".join(self.fragments))
        finally:
            self.streams_closed += 1

    async def send_once(self, prompt, system_instruction, model=None):
        self.prompts.append(prompt)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.reply

