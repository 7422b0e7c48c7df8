from dataclasses import dataclass
from enum import Enum, IntEnum, unique


class LogLevel(Enum):
    """LogLevel"""

    DEBUG = 10
    INFO = 20
    WARNING = 30
    ERROR = 40
    CRITICAL = 50

    @classmethod
    def _missing_(cls, value):
        """Handle cases where a value passed to the Enum is not found among its members"""
        if isinstance(value, str):
            value = value.strip().upper()
            for member in cls:
                if member.name == value:
                    return member
        return cls.DEBUG  # fallback


@unique
class DHCPType(IntEnum):
    DISCOVER = 1
    OFFER = 2
    REQUEST = 3
    DECLINE = 4
    ACK = 5
    NAK = 6
    RELEASE = 7
    INFORM = 8

    def __str__(self) -> str:
        return str(self.value)


@unique
class BOOTPOp(IntEnum):
    """BOOTP op field, direction of the message."""

    REQUEST = 1
    REPLY = 2


@unique
class ReceiverState(str, Enum):
    """Offer correlator lifecycle."""

    WAITING = "waiting"
    ACCUMULATING = "accumulating"
    COMPLETE = "complete"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self in (ReceiverState.COMPLETE, ReceiverState.TIMED_OUT)


@unique
class SessionStatus(IntEnum):
    """Terminal status of a probe session, doubles as process exit code."""

    COMPLETED = 0
    TIMED_OUT = 1

    def __str__(self) -> str:
        return self.name.lower()


@dataclass(frozen=True)
class OfferRecord:
    """
    A DHCP Offer observed for one of the probed addresses.

    Attributes:
        source_mac (str): Client hardware address the offer is addressed to (chaddr).
        offered_ip (str): 'Your' IP address proposed by the server (yiaddr).
        dhcp_server (str): Server Identifier option (54) of the offer.
        xid (int): Transaction id the offer carried.
    """

    source_mac: str
    offered_ip: str
    dhcp_server: str
    xid: int = 0

    def __repr__(self):
        return (
            f"mac='{self.source_mac}',offered_ip='{self.offered_ip}',"
            f"dhcp_server='{self.dhcp_server}'"
        )

    def to_dict(self) -> dict:
        return {
            "source_mac": self.source_mac,
            "offered_ip": self.offered_ip,
            "dhcp_server": self.dhcp_server,
        }


@dataclass(frozen=True)
class ReplyRecord:
    """A reply that counted toward completion but was not an Offer.

    `dhcp_type` is None when the reply could not be decoded.
    """

    source_mac: str
    dhcp_type: DHCPType | int | None
    dhcp_server: str = ""
    xid: int = 0

    def to_dict(self) -> dict:
        return {
            "source_mac": self.source_mac,
            "dhcp_type": None if self.dhcp_type is None else int(self.dhcp_type),
            "dhcp_server": self.dhcp_server,
        }


@dataclass(frozen=True)
class SessionResult:
    status: SessionStatus
    offers: int
    replies: int
    expected: int

    @property
    def unanswered(self) -> int:
        return max(self.expected - self.replies, 0)

    def to_dict(self) -> dict:
        return {
            "status": str(self.status),
            "offers": self.offers,
            "replies": self.replies,
            "expected": self.expected,
        }


@dataclass(frozen=True)
class OfferEvent:
    record: OfferRecord


@dataclass(frozen=True)
class ReplyEvent:
    record: ReplyRecord


@dataclass(frozen=True)
class TerminalEvent:
    result: SessionResult


ProbeEvent = OfferEvent | ReplyEvent | TerminalEvent
