"""
Ollama-backed language model collaborator.
"""

import time
from typing import Any, Dict, List, Optional

import httpx
import ollama

from .agent import LanguageModel, UpstreamError, build_messages
from ..core.config import LLM_TEMPERATURE, OLLAMA_HOST, OLLAMA_MODEL
from ..core.conversation import ConversationTurn
from ..util.logging import logger

TRANSPORT_ERRORS = (ollama.ResponseError, httpx.HTTPError, ConnectionError)


class OllamaAgent(LanguageModel):
    """
    Talks to a local Ollama server in JSON mode.
    Timeouts are enforced by the orchestrator, not here.
    """

    def __init__(self, model_name: str = OLLAMA_MODEL, host: str = OLLAMA_HOST,
                 temperature: float = LLM_TEMPERATURE, client: Optional[ollama.AsyncClient] = None):
        super().__init__("ollama", model_name)
        self.host = host
        self.temperature = temperature
        self.client = client or ollama.AsyncClient(host=host)

    async def complete(self, system_prompt: str, context: List[ConversationTurn], command: str) -> str:
        messages = build_messages(system_prompt, context, command)
        start_time = time.time()
        try:
            response = await self.client.chat(
                model=self.model_name,
                messages=messages,
                format="json",
                options={
                    'temperature': self.temperature,
                    'top_p': 0.9
                }
            )
        except TRANSPORT_ERRORS as e:
            duration_ms = (time.time() - start_time) * 1000
            logger.log_llm_call(self.model_name, duration_ms, "failed", {"error": str(e)[:200]})
            raise UpstreamError(f"Ollama model error: {e}")

        duration_ms = (time.time() - start_time) * 1000
        content = response['message']['content'] or ""
        logger.log_llm_call(self.model_name, duration_ms, "success", {
            "context_messages": len(context),
            "response_length": len(content)
        })
        return content

    async def is_healthy(self) -> bool:
        """Check that Ollama answers and has the configured model pulled."""
        try:
            listing = await self.client.list()
        except TRANSPORT_ERRORS as e:
            logger.warning(f"Ollama health check failed: {e}")
            return False
        names = [m['model'] for m in listing['models']]
        return self.model_name in names

    def get_status(self) -> Dict[str, Any]:
        status = super().get_status()
        status.update({'host': self.host, 'temperature': self.temperature})
        return status


def check_ollama_health(host: str = OLLAMA_HOST) -> bool:
    """
    Synchronous connectivity probe.
    Used by the operator scripts before starting the server.
    """
    try:
        ollama.Client(host=host).list()
        return True
    except TRANSPORT_ERRORS:
        return False
