"""
Pytest configuration and fixtures.
Shared test utilities and a scripted language model.
"""

import json
import re

import pytest
from fastapi.testclient import TestClient
from google.adk.models.llm_response import LlmResponse
from google.genai import types

from data.lemon_law_rules import LEMON_LAW_RULES
from lemon_law.agent import LemonLawAssistant
from lemon_law.rules import parse_rule_groups
from lemon_law.session_store import SessionStore


class FakeLanguageModel:
    """
    Stand-in for LanguageModelClient.

    complete() returns the queued replies in order; stream() yields the queued
    stream replies word by word. A queued exception is raised instead.
    """

    def __init__(self, completions=None, streams=None):
        self.completions = list(completions or [])
        self.streams = list(streams or [])
        self.complete_calls = []
        self.stream_calls = []

    async def complete(
        self, messages, temperature=None, response_schema=None, screen_user_messages=True
    ):
        self.complete_calls.append(
            {
                "messages": messages,
                "temperature": temperature,
                "response_schema": response_schema,
                "screen_user_messages": screen_user_messages,
            }
        )
        reply = self.completions.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def stream(
        self, messages, temperature=None, response_schema=None, screen_user_messages=True
    ):
        self.stream_calls.append(messages)
        reply = self.streams.pop(0) if self.streams else "OK"
        if isinstance(reply, Exception):
            raise reply
        for token in re.findall(r"\S+\s*", reply):
            yield token

    def get_circuit_breaker_state(self):
        return {"name": "FakeBreaker", "state": "closed", "failure_count": 0}


class ScriptedAdkModel:
    """
    Stand-in for ADK's LiteLlm underneath a real LanguageModelClient.

    Each generate_content_async() call consumes the next queued reply. Streaming
    calls yield it word by word as partial responses followed by the aggregated
    final response, the way LiteLlm does.
    """

    def __init__(self, replies=None):
        self.replies = list(replies or [])
        self.requests = []

    async def generate_content_async(self, llm_request, stream=False):
        self.requests.append(llm_request)
        reply = self.replies.pop(0)
        if stream:
            for token in re.findall(r"\S+\s*", reply):
                yield _adk_response(token, partial=True)
        yield _adk_response(reply, partial=False)


def _adk_response(text, partial):
    return LlmResponse(
        content=types.Content(role="model", parts=[types.Part(text=text)]), partial=partial
    )


def extraction_reply(next_step="COLLECT", **facts):
    """JSON the extraction call would return."""
    return json.dumps({"nextStep": next_step, "collectedInfo": facts})


@pytest.fixture
def rule_groups():
    """Built-in rule table, parsed."""
    return parse_rule_groups(LEMON_LAW_RULES)


@pytest.fixture
def fake_llm():
    return FakeLanguageModel()


@pytest.fixture
def assistant(fake_llm):
    """Assistant wired to the scripted model and a fresh store."""
    return LemonLawAssistant(llm=fake_llm, store=SessionStore(max_sessions=100, ttl_seconds=600))


@pytest.fixture
def test_client():
    """Create FastAPI test client."""
    from lemon_law.main import app

    return TestClient(app)
