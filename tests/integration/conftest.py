#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Pytest fixtures for integration tests.

Provides:
- ScriptedAgent: Agent replaying canned responses, one per turn
- FailingAgent: Agent that raises on its first call
- mock_agent: MockAgent answering from the filled company form
"""

import pytest
import sys
from pathlib import Path
from typing import List, Optional

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from markform.harness import Agent, AgentResponse, MockAgent


class ScriptedAgent(Agent):
    """Returns the given responses in order, then empty responses."""

    def __init__(self, responses: Optional[List[AgentResponse]] = None):
        self.responses = list(responses or [])
        self.seen_issues = []

    async def generate_patches(self, issues, form, max_patches):
        self.seen_issues.append([issue.ref for issue in issues])
        if self.responses:
            return self.responses.pop(0)
        return AgentResponse()


class FailingAgent(Agent):
    """Simulates a provider outage."""

    async def generate_patches(self, issues, form, max_patches):
        raise RuntimeError("model endpoint unavailable")


@pytest.fixture
def mock_agent(filled_company_form):
    return MockAgent(filled_company_form)


@pytest.fixture
def idle_agent():
    """Agent that never proposes anything."""
    return ScriptedAgent()


@pytest.fixture
def failing_agent():
    return FailingAgent()


@pytest.fixture
def scripted_agent():
    """Factory: scripted_agent([AgentResponse(...), ...])"""
    return ScriptedAgent
