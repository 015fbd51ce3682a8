"""Agent registry backed by the durable store."""

from __future__ import annotations

import logging
from typing import Callable, Optional

from .audit import AuditTrail, EventType
from .errors import AgentHasLiveSessionsError, AgentNotFoundError, DuplicateAgentError
from .models import Agent, AgentStatus, Session, now_ms
from .store import AGENTS_KEY, SESSIONS_KEY, DurableStore

logger = logging.getLogger(__name__)


class AgentRegistry:
    """Owns paired agent records. Agent ids are unique."""

    def __init__(
        self,
        store: DurableStore,
        audit: Optional[AuditTrail] = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.store = store
        self.audit = audit
        self.clock = clock

    def _load(self) -> list[Agent]:
        return self.store.load(AGENTS_KEY, Agent.from_dict)

    def _mutate(self, agent_id: str, change: Callable[[Agent], None]) -> Agent:
        with self.store.transaction():
            agents = self._load()
            for agent in agents:
                if agent.id == agent_id:
                    change(agent)
                    self.store.save(AGENTS_KEY, agents)
                    return agent
        raise AgentNotFoundError(f"Agent not found: {agent_id}")

    def list_agents(self) -> list[Agent]:
        return self._load()

    def get_agent(self, agent_id: str) -> Optional[Agent]:
        for agent in self._load():
            if agent.id == agent_id:
                return agent
        return None

    def require_agent(self, agent_id: str) -> Agent:
        agent = self.get_agent(agent_id)
        if agent is None:
            raise AgentNotFoundError(f"Agent not found: {agent_id}")
        return agent

    def list_for_wallet(self, wallet_key: str) -> list[Agent]:
        return [agent for agent in self._load() if agent.wallet_key == wallet_key]

    def add_agent(self, agent: Agent) -> Agent:
        with self.store.transaction():
            agents = self._load()
            if any(existing.id == agent.id for existing in agents):
                raise DuplicateAgentError(f"Agent already paired: {agent.id}")
            agents.append(agent)
            self.store.save(AGENTS_KEY, agents)

        logger.info("Agent paired: %s (%s)", agent.id, agent.name)
        if self.audit:
            self.audit.log(
                EventType.AGENT_PAIRED,
                agent_id=agent.id,
                wallet_key=agent.wallet_key,
                details={"name": agent.name},
            )
        return agent

    def update_status(self, agent_id: str, status: AgentStatus) -> Agent:
        agent = self._mutate(agent_id, lambda a: a.set_status(status))
        if self.audit:
            self.audit.log(EventType.AGENT_STATUS_CHANGED, agent_id=agent_id, reason=status.value)
        return agent

    def update_last_seen(self, agent_id: str, last_seen: Optional[int] = None) -> Agent:
        seen_at = self.clock() if last_seen is None else last_seen

        def touch(agent: Agent) -> None:
            # out-of-order reports never move lastSeen backwards
            if agent.last_seen is None or seen_at > agent.last_seen:
                agent.last_seen = seen_at

        return self._mutate(agent_id, touch)

    def remove_agent(self, agent_id: str) -> Agent:
        """Delete an agent. Its sessions must already be terminal."""
        with self.store.transaction():
            live = [
                s.id
                for s in self.store.load(SESSIONS_KEY, Session.from_dict)
                if s.agent_id == agent_id and s.status.is_live
            ]
            if live:
                raise AgentHasLiveSessionsError(agent_id, live)

            agents = self._load()
            remaining = [a for a in agents if a.id != agent_id]
            if len(remaining) == len(agents):
                raise AgentNotFoundError(f"Agent not found: {agent_id}")
            removed = next(a for a in agents if a.id == agent_id)
            self.store.save(AGENTS_KEY, remaining)

        logger.info("Agent removed: %s", agent_id)
        if self.audit:
            self.audit.log(EventType.AGENT_REMOVED, agent_id=agent_id)
        return removed
