import struct
from dataclasses import dataclass, field

from scapy.data import ETH_P_IP
from scapy.error import Scapy_Exception
from scapy.layers.dhcp import BOOTP, DHCP
from scapy.layers.inet import IP, UDP
from scapy.layers.l2 import Ether
from scapy.packet import Packet

from config.config import config
from models.models import BOOTPOp, DHCPType
from services.probe.exceptions import DecodingError, EncodingError
from utils.dhcp_utils import DHCPUtilities

PROBE_CONFIG = config.get("probe")
BROADCAST_MAC = str(PROBE_CONFIG.get("broadcast_mac"))
BROADCAST_IP = str(PROBE_CONFIG.get("broadcast_ip"))
SOURCE_IP = str(PROBE_CONFIG.get("source_ip"))
TTL = int(PROBE_CONFIG.get("ttl"))
PARAM_REQ_LIST = tuple(int(_code) for _code in PROBE_CONFIG.get("param_req_list"))

CLIENT_PORT = 68
SERVER_PORT = 67
HTYPE_ETHERNET = 1
UNSPECIFIED_IP = "0.0.0.0"


@dataclass(frozen=True)
class FrameTemplate:
    """
    Layers shared by every Discover frame of a session.

    Only the probing hardware address (Ethernet source and BOOTP chaddr)
    and, optionally, the transaction id change from frame to frame.

    Attributes:
        xid (int): Session transaction id, used when no per-frame xid is given.
        broadcast_mac (str): Ethernet destination.
        source_ip (str): IPv4 source, unspecified for a Discover.
        broadcast_ip (str): IPv4 destination.
        ttl (int): IPv4 time to live.
        param_req_list (tuple[int, ...]): Option 55 codes, in wire order.
        hostname (str): Option 12 payload, omitted from the frame when empty.
    """

    xid: int
    broadcast_mac: str = BROADCAST_MAC
    source_ip: str = SOURCE_IP
    broadcast_ip: str = BROADCAST_IP
    ttl: int = TTL
    param_req_list: tuple[int, ...] = field(default=PARAM_REQ_LIST)
    hostname: str = ""

    def __post_init__(self):
        if not 0 <= self.xid <= 0xFFFFFFFF:
            raise EncodingError(f"xid out of range: {self.xid}.")
        if any(not 0 <= _code <= 255 for _code in self.param_req_list):
            raise EncodingError("Parameter request codes must fit one octet.")

    def dhcp_options(self) -> list:
        """Discover options, in wire order."""
        _options: list = [
            ("message-type", int(DHCPType.DISCOVER)),
            ("param_req_list", list(self.param_req_list)),
        ]
        if self.hostname:
            _options.append(("hostname", self.hostname.encode("utf-8")))
        _options.append("end")
        return _options


def build_packet(template: FrameTemplate, address: str, xid: int | None = None) -> Packet:
    """Assemble the scapy layers of one Discover frame for `address`."""

    _mac = DHCPUtilities.normalize_mac(address)
    _xid = template.xid if xid is None else xid
    if not 0 <= _xid <= 0xFFFFFFFF:
        raise EncodingError(f"xid out of range: {_xid}.")

    return (
        Ether(src=_mac, dst=template.broadcast_mac, type=ETH_P_IP)
        / IP(src=template.source_ip, dst=template.broadcast_ip, ttl=template.ttl)
        / UDP(sport=CLIENT_PORT, dport=SERVER_PORT)
        / BOOTP(
            op=int(BOOTPOp.REQUEST),
            htype=HTYPE_ETHERNET,
            xid=_xid,
            ciaddr=UNSPECIFIED_IP,
            chaddr=DHCPUtilities.mac_to_bytes(_mac),
        )
        / DHCP(options=template.dhcp_options())
    )


def build_frame(template: FrameTemplate, address: str, xid: int | None = None) -> bytes:
    """Serialize the Discover frame for `address`.

    Lengths and checksums (IPv4 header, UDP over the pseudo-header) are left
    unset on the layers so scapy computes them while building.

    Raises:
        EncodingError: `address` is not a 6-octet MAC or the frame cannot be built.
    """
    _packet = build_packet(template, address, xid)
    try:
        return bytes(_packet)
    except (Scapy_Exception, struct.error, ValueError, TypeError) as err:
        raise EncodingError(f"Cannot serialize frame for {address}: {err}") from err


def decode_frame(data: bytes) -> Packet:
    """Dissect a raw Ethernet frame."""
    if not data:
        raise DecodingError("Empty frame.")
    try:
        return Ether(data)
    except (Scapy_Exception, struct.error, ValueError, IndexError) as err:
        raise DecodingError(f"Cannot dissect frame: {err}") from err
