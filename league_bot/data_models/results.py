"""
Command result models shared by the operations layer.
"""

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class OperationResult:
    """Outcome of a command-facing operation."""
    success: bool
    message: str
    data: Optional[Any] = None

    @classmethod
    def ok(cls, message: str, data: Any = None) -> 'OperationResult':
        return cls(True, message, data)

    @classmethod
    def fail(cls, message: str, data: Any = None) -> 'OperationResult':
        return cls(False, message, data)


@dataclass
class FixtureGenerationResult:
    """Result of a fixture generation run."""
    success: bool
    created: int
    message: str


@dataclass
class MatchmakingReport:
    """Summary of one matchmaker tick."""
    matches_created: list = field(default_factory=list)
    claim_conflicts: int = 0
    rollbacks: int = 0
    channel_missing: bool = False
    fixtures_generated: int = 0

    @property
    def created_count(self) -> int:
        return len(self.matches_created)
