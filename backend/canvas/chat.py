"""Canvas chat: @mention parsing, intent keywords and the message timeline."""

import re
import time
import uuid
from collections.abc import Callable
from typing import Literal

from canvas.types import AgentType, ChatMessage

MENTION_PATTERN = re.compile(r"@(\w+?)(?:[\s_-]?agent)?\b", re.IGNORECASE)
REGENERATE_PATTERN = re.compile(r"regenerate\s*", re.IGNORECASE)

_AGENT_ALIASES: dict[str, AgentType] = {
    "title": AgentType.TITLE,
    "titles": AgentType.TITLE,
    "description": AgentType.DESCRIPTION,
    "desc": AgentType.DESCRIPTION,
    "thumbnail": AgentType.THUMBNAIL,
    "thumb": AgentType.THUMBNAIL,
    "tweets": AgentType.TWEETS,
    "tweet": AgentType.TWEETS,
    "social": AgentType.TWEETS,
    "twitter": AgentType.TWEETS,
}

REGENERATION_KEYWORDS = (
    "regenerate",
    "generate again",
    "create new",
    "make new",
    "redo",
    "try again",
    "give me another",
    "different version",
    "new version",
    "change",
    "make",
    "create",
    "modify",
    "update",
    "edit",
)

GENERATE_KEYWORDS = ("generate", "create")

NO_MENTION_REPLY = (
    "Please @mention a specific agent (e.g., @TITLE_AGENT) to get help with "
    "content generation or refinement."
)


def parse_mention(text: str) -> AgentType | None:
    """Return the agent type named by the first recognised @mention."""
    for match in MENTION_PATTERN.finditer(text):
        agent_type = _AGENT_ALIASES.get(match.group(1).lower())
        if agent_type is not None:
            return agent_type
    return None


def strip_mention(text: str) -> str:
    return MENTION_PATTERN.sub("", text, count=1).strip()


def strip_regenerate(text: str) -> str:
    return REGENERATE_PATTERN.sub("", strip_mention(text)).strip()


def wants_generation(text: str) -> bool:
    lowered = text.lower()
    return any(keyword in lowered for keyword in GENERATE_KEYWORDS)


def is_regeneration_request(text: str, has_draft: bool) -> bool:
    lowered = text.lower()
    if any(keyword in lowered for keyword in REGENERATION_KEYWORDS):
        return True
    return has_draft and "generate" in lowered


def regeneration_message(agent_type: AgentType, current_draft: str, request: str) -> str:
    """Wrap a request so the model produces a new version, not a tweak."""
    return (
        f"REGENERATE the {agent_type.value} with a COMPLETELY NEW version based on the "
        f'user\'s instructions. Current version: "{current_draft}". '
        f"User requirements: {request}. "
        "Create something different that incorporates their feedback."
    )


class ChatLog:
    """Time-ordered chat messages of one canvas.

    Args:
        clock: Source of timestamps, replaceable in tests.
    """

    def __init__(
        self,
        messages: list[ChatMessage] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._messages: list[ChatMessage] = sorted(messages or [], key=lambda m: m.timestamp)
        self._clock = clock

    @property
    def messages(self) -> list[ChatMessage]:
        return list(self._messages)

    def add(
        self,
        role: Literal["user", "ai"],
        content: str,
        agent_node_id: str | None = None,
    ) -> ChatMessage:
        message = ChatMessage(
            id=uuid.uuid4().hex,
            role=role,
            content=content,
            timestamp=self._clock(),
            agent_node_id=agent_node_id,
        )
        self._messages.append(message)
        return message

    def history_for(self, agent_node_id: str, exclude_id: str | None = None) -> list[ChatMessage]:
        return [
            m
            for m in self._messages
            if m.agent_node_id == agent_node_id and m.id != exclude_id
        ]

    def recent_regenerate_context(self, agent_node_id: str, window: float) -> str | None:
        """Latest user request to regenerate this node within ``window`` seconds.

        Returns:
            The request with its mention and "regenerate" removed, or None.
        """
        cutoff = self._clock() - window
        for message in reversed(self._messages):
            if message.timestamp < cutoff:
                break
            if (
                message.role == "user"
                and message.agent_node_id == agent_node_id
                and "regenerate" in message.content.lower()
            ):
                return strip_regenerate(message.content) or None
        return None
