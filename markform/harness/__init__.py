"""
Turn-based harness driving an agent against a form.
"""

from .agent import Agent, AgentResponse
from .config import HarnessConfig, resolve_harness_config
from .harness import (
    FormHarness,
    HarnessResult,
    HarnessStatus,
    PartialReason,
    TurnRecord,
    fill_form,
    markdown_sha256,
)
from .mock_agent import MockAgent

__all__ = [
    'Agent',
    'AgentResponse',
    'HarnessConfig',
    'resolve_harness_config',
    'FormHarness',
    'HarnessResult',
    'HarnessStatus',
    'PartialReason',
    'TurnRecord',
    'fill_form',
    'markdown_sha256',
    'MockAgent',
]
