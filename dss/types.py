"""DSS core data types."""

from __future__ import annotations

from dataclasses import dataclass

from dss.constants import DecisionKind

__all__ = [
    "SchedulableUnit",
    "SchedulingDecision",
    "UsernamePassword",
]


@dataclass(frozen=True)
class SchedulableUnit:
    """Identity of one queued build: the project plus its build number."""

    project_name: str
    build_number: int

    def __str__(self) -> str:
        return f"{self.project_name}#{self.build_number}"


@dataclass(frozen=True)
class SchedulingDecision:
    """Answer of the scheduling hook for one attempt.

    ``token`` is set only for READY decisions; ``reason`` only for REFUSED.
    """

    kind: DecisionKind
    token: str | None = None
    reason: str | None = None

    @classmethod
    def ready(cls, token: str) -> SchedulingDecision:
        return cls(DecisionKind.READY, token=token)

    @classmethod
    def pending(cls) -> SchedulingDecision:
        return cls(DecisionKind.PENDING)

    @classmethod
    def refused(cls, reason: str) -> SchedulingDecision:
        return cls(DecisionKind.REFUSED, reason=reason)

    @classmethod
    def unmanaged(cls) -> SchedulingDecision:
        return cls(DecisionKind.UNMANAGED)

    @property
    def is_ready(self) -> bool:
        return self.kind is DecisionKind.READY


@dataclass(frozen=True)
class UsernamePassword:
    """Username/password pair resolved from a credential id."""

    username: str
    password: str

    def __repr__(self) -> str:
        return f"UsernamePassword(username={self.username!r}, password='******')"
