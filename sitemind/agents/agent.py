"""
Language-model collaborator interface.

A LanguageModel receives the system prompt, the bounded conversation context
and the new command, and returns raw text. It has no authority: whatever it
returns goes through the response contract validator.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List

from ..core.conversation import ConversationTurn
from ..core.schema import ErrorCode, PipelineError


class UpstreamError(PipelineError):
    """Transport, timeout or provider failure while talking to the model."""
    code = ErrorCode.UPSTREAM_UNAVAILABLE


class LanguageModel(ABC):

    def __init__(self, agent_id: str, model_name: str):
        self.agent_id = agent_id
        self.model_name = model_name

    @abstractmethod
    async def complete(self, system_prompt: str, context: List[ConversationTurn], command: str) -> str:
        """
        Produce the raw reply for one command.

        Raises:
            UpstreamError: the provider could not be reached or failed
        """

    async def is_healthy(self) -> bool:
        return True

    def get_status(self) -> Dict[str, Any]:
        """Get current status of this model."""
        return {
            "agent_id": self.agent_id,
            "model_name": self.model_name,
            "type": self.__class__.__name__,
        }


def build_messages(system_prompt: str, context: List[ConversationTurn], command: str) -> List[Dict[str, str]]:
    """Chat-style message list: system prompt, context turns, then the command."""
    messages = [{"role": "system", "content": system_prompt}]
    for turn in context:
        role = turn.role if turn.role in ("user", "assistant") else "user"
        messages.append({"role": role, "content": turn.content})
    messages.append({"role": "user", "content": command})
    return messages
