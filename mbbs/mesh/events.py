"""
MBBS Decoded Events

Typed events produced at the transport boundary. The meshtastic library
hands us packet and node dicts; everything past this module works with
the dataclasses below.
"""

import base64
import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from google.protobuf.json_format import MessageToDict
from google.protobuf.message import DecodeError as ProtobufDecodeError
from meshtastic.protobuf import mesh_pb2, portnums_pb2

from ..errors import DecodeError

logger = logging.getLogger(__name__)

# All-bits-set destination: every node on the mesh
BROADCAST_NUM = 0xFFFFFFFF

# want_config_id that tells the radio to leave out its node database
NODELESS_CONFIG_ID = 69420


@dataclass
class AppData:
    """Decoded application payload."""
    portnum: int
    payload: bytes = b""

    @property
    def port_name(self) -> str:
        try:
            return portnums_pb2.PortNum.Name(self.portnum)
        except ValueError:
            return str(self.portnum)


@dataclass
class Encrypted:
    """Payload we hold no key for."""
    data: bytes = b""


@dataclass
class Envelope:
    """One mesh packet: source, destination and a decoded-or-encrypted body."""
    from_num: int
    to_num: int
    body: Union[AppData, Encrypted]
    packet_id: int = 0
    channel: int = 0
    rx_time: int = 0
    rx_snr: Optional[float] = None
    rx_rssi: Optional[int] = None
    hop_limit: Optional[int] = None

    @property
    def is_broadcast(self) -> bool:
        return self.to_num == BROADCAST_NUM

    def to_dict(self) -> dict[str, Any]:
        """Serialize for the archive. Binary fields are base64 encoded."""
        data: dict[str, Any] = {
            "id": self.packet_id,
            "from": self.from_num,
            "to": self.to_num,
            "channel": self.channel,
            "rxTime": self.rx_time,
        }
        for key, value in (
            ("rxSnr", self.rx_snr),
            ("rxRssi", self.rx_rssi),
            ("hopLimit", self.hop_limit),
        ):
            if value is not None:
                data[key] = value

        if isinstance(self.body, AppData):
            data["decoded"] = {
                "portnum": self.body.portnum,
                "payload": base64.b64encode(self.body.payload).decode("ascii"),
            }
        else:
            data["encrypted"] = base64.b64encode(self.body.data).decode("ascii")
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Envelope":
        """Inverse of to_dict."""
        if "decoded" in data:
            decoded = data["decoded"]
            body: Union[AppData, Encrypted] = AppData(
                portnum=int(decoded.get("portnum", 0)),
                payload=base64.b64decode(decoded.get("payload", "")),
            )
        else:
            body = Encrypted(base64.b64decode(data.get("encrypted", "")))

        return cls(
            from_num=int(data["from"]),
            to_num=int(data["to"]),
            body=body,
            packet_id=int(data.get("id", 0)),
            channel=int(data.get("channel", 0)),
            rx_time=int(data.get("rxTime", 0)),
            rx_snr=data.get("rxSnr"),
            rx_rssi=data.get("rxRssi"),
            hop_limit=data.get("hopLimit"),
        )


@dataclass
class NodeInfoEvent:
    """Identity of a node, as reported from the radio's node database."""
    num: int
    user: dict[str, Any] = field(default_factory=dict)


@dataclass
class PacketEvent:
    """A packet heard on the mesh."""
    envelope: Envelope


DecodedEvent = Union[NodeInfoEvent, PacketEvent]


def port_number(value: Any) -> int:
    """Normalize a portnum given as int or enum name. Unknown names map to UNKNOWN_APP."""
    if isinstance(value, int):
        return value
    try:
        return portnums_pb2.PortNum.Value(str(value))
    except ValueError:
        return portnums_pb2.PortNum.UNKNOWN_APP


def _as_bytes(value: Any) -> bytes:
    """Payloads arrive as bytes, or base64 text when produced by MessageToDict."""
    if value is None:
        return b""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    try:
        return base64.b64decode(value)
    except (ValueError, TypeError):
        return b""


def decode_user(payload: bytes) -> dict[str, Any]:
    """
    Decode a NODEINFO_APP payload into an identity record.

    Raises:
        DecodeError: payload is not a valid User protobuf
    """
    try:
        user = mesh_pb2.User.FromString(payload)
    except (ProtobufDecodeError, TypeError) as e:
        raise DecodeError(f"Invalid NodeInfo payload: {e}") from e
    return MessageToDict(user)


def event_from_packet(packet: dict) -> Optional[PacketEvent]:
    """
    Build a PacketEvent from a meshtastic receive-callback packet dict.

    Returns None for shapes we do not understand.
    """
    if not isinstance(packet, dict) or "from" not in packet:
        return None

    try:
        from_num = int(packet["from"])
        to_num = int(packet.get("to", BROADCAST_NUM))
    except (TypeError, ValueError):
        return None

    decoded = packet.get("decoded")
    if isinstance(decoded, dict):
        body: Union[AppData, Encrypted] = AppData(
            portnum=port_number(decoded.get("portnum", 0)),
            payload=_as_bytes(decoded.get("payload")),
        )
    elif "encrypted" in packet:
        body = Encrypted(_as_bytes(packet.get("encrypted")))
    else:
        return None

    return PacketEvent(Envelope(
        from_num=from_num,
        to_num=to_num,
        body=body,
        packet_id=int(packet.get("id", 0) or 0),
        channel=int(packet.get("channel", 0) or 0),
        rx_time=int(packet.get("rxTime", 0) or 0),
        rx_snr=packet.get("rxSnr"),
        rx_rssi=packet.get("rxRssi"),
        hop_limit=packet.get("hopLimit"),
    ))


def event_from_node(node: dict) -> Optional[NodeInfoEvent]:
    """Build a NodeInfoEvent from a meshtastic node dict. Nodes without a user are skipped."""
    if not isinstance(node, dict):
        return None

    user = node.get("user")
    if not isinstance(user, dict) or "num" not in node:
        return None

    try:
        num = int(node["num"])
    except (TypeError, ValueError):
        return None

    return NodeInfoEvent(num=num, user=dict(user))
