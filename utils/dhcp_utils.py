"""dhcp_utils.py.

Provides helper functions and a class to work with DHCP packets, including:
- Normalising and converting MAC addresses between text and raw form
- Extract DHCP fields (message type, server ID, hostname, parameter list)
- Validating IPv4 addresses
- Validating network interfaces

Uses Scapy for packet parsing and ipaddress for IP operations.
"""

import re
from ipaddress import AddressValueError, IPv4Address

from scapy.arch import get_if_list
from scapy.layers.dhcp import DHCP
from scapy.packet import Packet
from scapy.utils import mac2str, str2mac

from services.probe.exceptions import DecodingError, EncodingError

DEFAULT_HOSTNAME = "unknown"
DEFAULT_DHCP_TYPE = -1
MAC_LENGTH = 6
MAC_PATTERN = re.compile(r"^[0-9a-f]{2}([:-])[0-9a-f]{2}(\1[0-9a-f]{2}){4}$")


def is_net_interface_valid(iface: str) -> bool:
    """is_net_interface_valid."""
    return iface in get_if_list()


class DHCPUtilities:
    """Utility class for parsing and extracting information from DHCP packets.

    Provides static methods to extract common DHCP fields such as:
        - DHCP message type
        - Server Identifier
        - Hostname
        - Parameter Request List
    Also includes helpers for MAC address conversion and IPv4 validation.
    """

    @staticmethod
    def normalize_mac(mac: str) -> str:
        """Return `mac` as six lowercase ':' separated hex pairs.

        Raises:
            EncodingError: `mac` is not a 6-octet hardware address.
        """
        if not isinstance(mac, str):
            raise EncodingError(f"MAC must be a str, got {type(mac).__name__}.")
        _candidate = mac.strip().lower()
        if not MAC_PATTERN.match(_candidate):
            raise EncodingError(f"Invalid MAC address: '{mac}'.")
        return _candidate.replace("-", ":")

    @staticmethod
    def mac_to_bytes(mac: str) -> bytes:
        """Converts a MAC address string to its 6 raw octets."""
        return mac2str(DHCPUtilities.normalize_mac(mac))

    @staticmethod
    def bytes_to_mac(raw: bytes) -> str:
        """Format the first 6 octets of a raw hardware address."""
        if not isinstance(raw, bytes) or len(raw) < MAC_LENGTH:
            raise DecodingError("Hardware address shorter than 6 octets.")
        return str2mac(raw[:MAC_LENGTH])

    @staticmethod
    def extract_dhcp_type_from_packet(packet: Packet) -> int:
        """Extract the DHCP message type from the packet."""
        for opt in packet[DHCP].options:
            if isinstance(opt, tuple) and opt[0] == "message-type":
                return int(opt[1])
        return DEFAULT_DHCP_TYPE

    @staticmethod
    def extract_server_id_from_dhcp_packet(packet: Packet) -> str:
        """Extract the DHCP Server Identifier from a DHCP packet (Option 54)."""
        for opt in packet[DHCP].options:
            if isinstance(opt, tuple) and opt[0] == "server_id":
                return opt[1]
        return ""

    @staticmethod
    def extract_hostname_from_packet(packet: Packet) -> str:
        """Extract hostname from packet."""
        for option in packet[DHCP].options:
            if isinstance(option, tuple) and option[0] == "hostname":
                return DHCPUtilities.convert_binary_to_string(option[1])
        return DEFAULT_HOSTNAME

    @staticmethod
    def extract_param_req_list(packet: Packet) -> list[int]:
        """Extract the 'param_req_list' from the DHCP packet (Option 55)."""
        for option in packet[DHCP].options:
            if isinstance(option, tuple) and option[0] == "param_req_list":
                _values = option[1:]
                if len(_values) == 1 and isinstance(_values[0], (list, tuple, bytes)):
                    return list(_values[0])
                return list(_values)
        return []

    @staticmethod
    def convert_binary_to_string(data_to_convert: bytes | str) -> str:
        """Decode option payloads that scapy leaves as bytes."""
        if isinstance(data_to_convert, str):
            return data_to_convert
        return data_to_convert.decode("utf-8", errors="ignore")

    @staticmethod
    def is_ipv4(value: str) -> bool:
        """Check for a dotted-decimal IPv4 address."""
        if not isinstance(value, str) or not value:
            return False
        try:
            IPv4Address(value)
        except AddressValueError:
            return False
        return True
