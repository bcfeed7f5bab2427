"""
Registry of voice agents the dashboard can place calls with.
"""

import asyncio
import logging
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict

from callflow.config.constants import LOGGER_NAME
from callflow.errors import AgentNotFoundError

logger = logging.getLogger(LOGGER_NAME)


class VoiceAgent(BaseModel):
    model_config = ConfigDict(frozen=True)

    agent_id: str
    name: str
    disabled: bool = False


class AgentDirectory:
    """In-memory agent registry keyed by voice API agent id."""

    def __init__(self, default_agent_id: Optional[str] = None):
        self.agents: Dict[str, VoiceAgent] = {}
        self._lock = asyncio.Lock()
        if default_agent_id:
            self.agents[default_agent_id] = VoiceAgent(
                agent_id=default_agent_id, name="Default agent"
            )

    async def register(self, agent_id: str, name: str, disabled: bool = False) -> VoiceAgent:
        """Add or replace an agent."""
        agent = VoiceAgent(agent_id=agent_id, name=name, disabled=disabled)
        async with self._lock:
            self.agents[agent_id] = agent
        logger.info(f"Registered voice agent {agent_id} ({name})")
        return agent

    def get(self, agent_id: str) -> VoiceAgent:
        agent = self.agents.get(agent_id)
        if agent is None:
            raise AgentNotFoundError(f"Agent not found: {agent_id}")
        return agent

    def list(self) -> List[VoiceAgent]:
        return sorted(self.agents.values(), key=lambda a: a.name.lower())

    async def remove(self, agent_id: str) -> None:
        async with self._lock:
            if self.agents.pop(agent_id, None) is None:
                raise AgentNotFoundError(f"Agent not found: {agent_id}")
        logger.info(f"Removed voice agent {agent_id}")
