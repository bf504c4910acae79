from __future__ import annotations
import logging
from collections import deque
from dataclasses import dataclass
from typing import Protocol, Sequence

from .errors import EmptyAnswer
from .llm import LLMClient
from .normalize import is_blank, norm_text
from .providers import call_upstream, decode_json
from .schemas import FreeTalkReply, parse_freetalk_reply

logger = logging.getLogger(__name__)

MAX_HISTORY = 20

ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"


@dataclass(frozen=True)
class ChatMessage:
    role: str  # user/assistant
    content: str


class ConversationPartner(Protocol):
    async def reply(self, message: str, history: Sequence[ChatMessage]) -> FreeTalkReply:
        ...


class LLMConversationPartner:
    def __init__(self, llm: LLMClient):
        self._llm = llm

    async def reply(self, message: str, history: Sequence[ChatMessage]) -> FreeTalkReply:
        raw = await call_upstream(
            self._llm.freetalk_reply(
                message=message,
                history=[(m.role, m.content) for m in history],
            ),
            "freetalk_reply",
        )
        return parse_freetalk_reply(decode_json(raw, "freetalk"))


class FreeTalkSession:
    """Open conversation with a tutor; keeps the last MAX_HISTORY messages as context."""

    def __init__(self, partner: ConversationPartner, *, max_history: int = MAX_HISTORY):
        self._partner = partner
        self._history: deque[ChatMessage] = deque(maxlen=max_history)
        self.last_reply: FreeTalkReply | None = None

    @property
    def history(self) -> tuple[ChatMessage, ...]:
        return tuple(self._history)

    async def send(self, message: str) -> FreeTalkReply:
        if is_blank(message):
            raise EmptyAnswer()
        text = norm_text(message)
        # a failed reply leaves the conversation untouched
        reply = await self._partner.reply(text, self.history)
        self._history.append(ChatMessage(ROLE_USER, text))
        self._history.append(ChatMessage(ROLE_ASSISTANT, reply.reply))
        self.last_reply = reply
        logger.info(
            "freetalk: reply history=%s correction=%s new_word=%s",
            len(self._history),
            reply.correction is not None,
            reply.new_word is not None,
        )
        return reply

    def reset(self) -> None:
        self._history.clear()
        self.last_reply = None
