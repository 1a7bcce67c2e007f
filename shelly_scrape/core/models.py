"""
Host and device records shared by the discovery pipeline and the collector.
"""

from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class HostCandidate:
    """A host reported by the discovery scan, not yet identified"""
    address: str
    display_name: Optional[str] = None


@dataclass(frozen=True)
class ConfirmedDevice:
    """A host the identifier accepted as a Shelly device"""
    address: str
    display_name: Optional[str] = None

    @classmethod
    def from_candidate(cls, candidate: HostCandidate) -> "ConfirmedDevice":
        return cls(address=candidate.address, display_name=candidate.display_name)

    @property
    def label(self) -> str:
        if self.display_name:
            return f"{self.address} ({self.display_name})"
        return self.address

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization"""
        return asdict(self)


@dataclass(frozen=True)
class MeterReading:
    """One power channel sampled from a device status payload"""
    address: str
    kind: str
    channel: int
    power: float
    timestamp: int
    display_name: Optional[str] = None
    total: Optional[float] = None
    voltage: Optional[float] = None
    current: Optional[float] = None
    is_valid: bool = True
