"""
MBBS Data Models

Dataclasses representing persisted entities.
"""

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class NodeRecord:
    """Known Meshtastic node identity."""
    num: int
    long_name: str = ""
    short_name: Optional[str] = None
    user_id: Optional[str] = None  # Meshtastic node ID (!abcdef12)
    hw_model: Optional[str] = None
    attributes: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_identity(cls, num: int, identity: dict[str, Any]) -> "NodeRecord":
        """Build from a meshtastic User dict (camelCase keys)."""
        attributes = dict(identity)
        long_name = attributes.pop("longName", "")
        if not isinstance(long_name, str):
            # Names end up in stats keys and must stay plain strings
            long_name = ""
        return cls(
            num=num,
            long_name=long_name,
            short_name=attributes.pop("shortName", None),
            user_id=attributes.pop("id", None),
            hw_model=attributes.pop("hwModel", None),
            attributes=attributes,
        )

    def to_identity(self) -> dict[str, Any]:
        """Inverse of from_identity."""
        identity = dict(self.attributes)
        identity["longName"] = self.long_name
        if self.short_name is not None:
            identity["shortName"] = self.short_name
        if self.user_id is not None:
            identity["id"] = self.user_id
        if self.hw_model is not None:
            identity["hwModel"] = self.hw_model
        return identity


@dataclass
class StatEntry:
    """Event counter with last-seen time."""
    count: int = 0
    last_seen: int = 0  # epoch seconds

    def to_list(self) -> list[int]:
        return [self.count, self.last_seen]
