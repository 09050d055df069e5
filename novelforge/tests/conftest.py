"""
Pytest configuration and fixtures for NovelForge tests.

This module provides:
- Network blocking fixture to prevent accidental API calls in CI
- A scripted model endpoint that answers per agent
- Common fixtures for the executor, requests and the director facade
"""

import asyncio
import socket
from typing import Dict, List, Optional

import pytest
from unittest.mock import patch

from novelforge.agents import AgentExecutor, AgentRoster, ChatResponse, ModelEndpoint
from novelforge.config import Settings
from novelforge.core import CancellationToken, Request
from novelforge.director import DirectorFacade


class NetworkBlockedError(Exception):
    """Raised when a test attempts to make a network connection."""
    pass


def _block_socket_connect(*args, **kwargs):
    """Block all socket connections to prevent accidental API calls."""
    raise NetworkBlockedError(
        "Network access is blocked in unit tests. "
        "If you need to test network functionality, use mocks."
    )


@pytest.fixture(autouse=True)
def block_network():
    """
    Automatically block all network connections in tests.

    Model endpoints, Qdrant, Supabase and Redis are all replaced by stubs or
    in-memory variants; anything that still reaches for a socket fails.
    """
    with patch.object(socket.socket, 'connect', _block_socket_connect):
        with patch.object(socket, 'create_connection', _block_socket_connect):
            yield


# Agent keys by the first words of their system prompt
PROMPT_PREFIXES = {
    "You are the Chief Director": "director",
    "You are the Narrator": "narrator",
    "You are the Character Actor": "character",
    "You are the Quality Inspector": "quality",
    "You are the Skyline Controller": "skyline",
    "You are the Groundline Controller": "groundline",
    "You are the Plotline Controller": "plotline",
}


class StubEndpoint(ModelEndpoint):
    """
    Scripted endpoint keyed by agent.

    Each agent has a queue of replies; the last reply repeats once the queue
    is down to one entry. Agents without replies answer "<agent> output".
    """

    def __init__(
        self,
        responses: Optional[Dict[str, List[str]]] = None,
        failures: Optional[Dict[str, Exception]] = None,
        hang: Optional[List[str]] = None,
        delay: float = 0.0,
        chunk_size: int = 4,
        chunk_delay: float = 0.0,
        dimension: int = 4,
    ):
        self.responses = {agent: list(replies) for agent, replies in (responses or {}).items()}
        self.failures = dict(failures or {})
        self.hang = set(hang or [])
        self.delay = delay
        self.chunk_size = chunk_size
        self.chunk_delay = chunk_delay
        self.dimension = dimension
        self.calls: List[Dict] = []
        self.events: List[tuple] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.embed_calls = 0

    @staticmethod
    def agent_for(messages) -> str:
        system = messages[0]["content"]
        for prefix, agent in PROMPT_PREFIXES.items():
            if system.startswith(prefix):
                return agent
        return "unknown"

    def _reply(self, agent: str) -> str:
        queue = self.responses.get(agent)
        if not queue:
            return f"{agent} output"
        if len(queue) > 1:
            return queue.pop(0)
        return queue[0]

    async def _begin(self, agent: str, messages) -> None:
        self.calls.append({"agent": agent, "messages": messages})
        self.events.append(("start", agent))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if agent in self.failures:
                raise self.failures[agent]
            if agent in self.hang:
                await asyncio.sleep(3600)
            if self.delay:
                await asyncio.sleep(self.delay)
        except BaseException:
            self.in_flight -= 1
            raise

    def _end(self, agent: str) -> None:
        self.in_flight -= 1
        self.events.append(("end", agent))

    async def chat(self, messages, model, temperature=0.7, max_tokens=None) -> ChatResponse:
        agent = self.agent_for(messages)
        await self._begin(agent, messages)
        content = self._reply(agent)
        self._end(agent)
        return ChatResponse(content=content, tokens_in=10, tokens_out=len(content), model=model)

    async def chat_stream(self, messages, model, temperature=0.7, max_tokens=None):
        agent = self.agent_for(messages)
        await self._begin(agent, messages)
        content = self._reply(agent)
        try:
            for i in range(0, len(content), self.chunk_size):
                await asyncio.sleep(self.chunk_delay)
                yield content[i:i + self.chunk_size]
        finally:
            self._end(agent)

    async def embed(self, texts):
        self.embed_calls += 1
        return [[1.0] + [0.0] * (self.dimension - 1) for _ in texts]

    def calls_for(self, agent: str) -> List[Dict]:
        return [call for call in self.calls if call["agent"] == agent]


@pytest.fixture
def stub_endpoint():
    return StubEndpoint()


@pytest.fixture
def roster():
    return AgentRoster()


@pytest.fixture
def executor(stub_endpoint, roster):
    return AgentExecutor(stub_endpoint, roster=roster)


@pytest.fixture
def request_ctx():
    """A fresh request for project 42 with no deadline."""
    return Request(user_id="user_1", instruction="续写上文一段紧张的打斗", project_id=42, token=CancellationToken())


@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def facade(executor, settings):
    return DirectorFacade(executor, settings=settings)
