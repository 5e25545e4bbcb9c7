"""Contributor (agent) registry.

Tracks the agents that create and supersede memories. The registry is an
ordinary object handed to whatever needs it, so separate engines (and
tests) each get their own isolated set of agents.
"""

import logging
import time

from pydantic import BaseModel, Field

from .models.validators import UnitFloat

logger = logging.getLogger(__name__)

DEFAULT_TRUST_LEVEL = 0.5


class AgentIdentity(BaseModel):
    """A registered contributor."""

    agent_id: str = Field(min_length=1)
    name: str | None = None
    agent_type: str = "assistant"
    capabilities: list[str] = Field(default_factory=list)
    trust_level: UnitFloat = DEFAULT_TRUST_LEVEL
    created_at: float = Field(default_factory=time.time)
    last_active: float | None = None


class AgentRegistry:
    """In-process store of agent identities keyed by id."""

    def __init__(self, default_trust_level: float = DEFAULT_TRUST_LEVEL):
        self._agents: dict[str, AgentIdentity] = {}
        self._default_trust = max(0.0, min(1.0, default_trust_level))

    def __len__(self) -> int:
        return len(self._agents)

    def __contains__(self, agent_id: object) -> bool:
        return agent_id in self._agents

    def register(self, agent: AgentIdentity | str, **fields) -> AgentIdentity:
        """Register (or replace) an agent and mark it active now."""
        if isinstance(agent, str):
            fields.setdefault("trust_level", self._default_trust)
            agent = AgentIdentity(agent_id=agent, **fields)
        registered = agent.model_copy(update={"last_active": time.time()})
        if registered.agent_id in self._agents:
            logger.info("Re-registering agent %s", registered.agent_id)
        self._agents[registered.agent_id] = registered
        return registered

    def get(self, agent_id: str) -> AgentIdentity | None:
        return self._agents.get(agent_id)

    def touch(self, agent_id: str) -> None:
        """Update an agent's last-active timestamp; unknown ids are ignored."""
        agent = self._agents.get(agent_id)
        if agent is not None:
            self._agents[agent_id] = agent.model_copy(update={"last_active": time.time()})

    def set_trust(self, agent_id: str, trust_level: float) -> AgentIdentity | None:
        """Set trust, clamped to [0, 1]. Returns the updated agent, or None if unknown."""
        agent = self._agents.get(agent_id)
        if agent is None:
            logger.warning("set_trust on unknown agent %s", agent_id)
            return None
        updated = agent.model_copy(update={"trust_level": max(0.0, min(1.0, trust_level))})
        self._agents[agent_id] = updated
        return updated

    def list_agents(self) -> list[AgentIdentity]:
        return list(self._agents.values())
