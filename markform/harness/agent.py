"""
Agent interface consumed by the harness.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from ..inspect import InspectIssue
from ..model import ParsedForm
from ..patches import PatchModel


@dataclass
class AgentResponse:
    """Patches proposed for one turn"""
    patches: List[Union[PatchModel, Dict[str, Any]]] = field(default_factory=list)
    done: bool = False  # agent has nothing more to contribute
    usage: Optional[Dict[str, int]] = None  # tokens used, when the agent tracks it


class Agent(ABC):
    """
    Abstract form-filling agent.
    Called once per turn; may be slow (network) and may raise.
    """

    @abstractmethod
    async def generate_patches(
        self,
        issues: List[InspectIssue],
        form: ParsedForm,
        max_patches: int,
    ) -> AgentResponse:
        """
        Propose patches addressing some of the issues.

        Args:
            issues: Prioritized issues for this turn (already capped)
            form: Current form (read-only)
            max_patches: Patches beyond this count are dropped

        Returns:
            AgentResponse with patches (wire dicts or patch models)
        """
        pass
