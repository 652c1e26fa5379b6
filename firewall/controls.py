"""The two gateway security controls relaxed during a renewal window."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum


class ControlState(str, Enum):
    OPEN = "open"        # relaxed for the challenge
    CLOSED = "closed"    # secure baseline


@dataclass(frozen=True)
class SecurityControl(ABC):
    """A pre-provisioned gateway control that can be opened and closed."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable name used in log lines."""


@dataclass(frozen=True)
class InboundForwardRule(SecurityControl):
    """DNAT port-forward rule, identified by its operator-assigned remark."""

    label: str

    @property
    def name(self) -> str:
        return f"port forward '{self.label}'"


@dataclass(frozen=True)
class GeoBlockFilter(SecurityControl):
    """Gateway-wide location block master switch."""

    @property
    def name(self) -> str:
        return "location block"
