from logging import Logger
from queue import Queue
from threading import Event
from time import monotonic
from typing import Callable, Mapping

from scapy.layers.dhcp import BOOTP, DHCP
from scapy.packet import Packet

from config.config import config
from models.models import (
    BOOTPOp,
    DHCPType,
    OfferEvent,
    OfferRecord,
    ProbeEvent,
    ReceiverState,
    ReplyEvent,
    ReplyRecord,
    SessionResult,
    SessionStatus,
    TerminalEvent,
)
from services.capture.capture import ReadHandle
from services.probe.exceptions import DecodingError
from services.probe.frame import decode_frame
from utils.dhcp_utils import DEFAULT_DHCP_TYPE, DHCPUtilities

READ_POLL_TIMEOUT = float(config.get("probe", "read_poll_seconds"))


def _as_dhcp_type(value: int) -> DHCPType | int:
    try:
        return DHCPType(value)
    except ValueError:
        return value


class OfferCorrelator:
    """
    Turns inbound frames into offer results for one probe session.

    ### States:
    - `WAITING`: nothing counted yet.
    - `ACCUMULATING`: at least one reply counted.
    - `COMPLETE`: replies counted == expected, terminal.
    - `TIMED_OUT`: deadline reached first, terminal.

    ### Counting rules:
    - Frames that are not BOOTP replies are ignored.
    - Every accepted reply counts toward the expected total.
    - Offers are published as `OfferEvent`, any other reply (Nak, Ack,
      undecodable options) as `ReplyEvent`.
    - With `strict_xid`, a reply is accepted only if its xid was sent by
      this session for the same hardware address.
    - A repeat reply for an already answered address still counts and is
      logged as a warning.
    - Setting `stop_event` ends the loop with `TIMED_OUT` at its next pass.

    Exactly one `TerminalEvent` is published, after every other event.
    """

    def __init__(
        self,
        logger: Logger,
        xid_map: Mapping[int, str] | None = None,
        strict_xid: bool = True,
        read_poll_timeout: float = READ_POLL_TIMEOUT,
        clock: Callable[[], float] = monotonic,
        stop_event: Event | None = None,
    ):
        self.logger = logger
        self._stop_event = stop_event or Event()
        self._answered: set[str] = set()
        self._xid_map: dict[int, str] = dict(xid_map or {})
        self.strict_xid = strict_xid
        self.read_poll_timeout = read_poll_timeout
        self._clock = clock
        self.state = ReceiverState.WAITING
        self.offers = 0
        self.replies = 0
        self.expected = 0
        self.result: SessionResult | None = None

    def classify(self, data: bytes) -> OfferRecord | ReplyRecord | None:
        """Map a raw frame to a record, or None when it does not concern us."""
        try:
            _packet = decode_frame(data)
        except DecodingError as err:
            self.logger.debug("Dropping frame: %s", err)
            return None

        if BOOTP not in _packet or _packet[BOOTP].op != BOOTPOp.REPLY:
            return None

        _bootp = _packet[BOOTP]
        try:
            _mac = DHCPUtilities.bytes_to_mac(bytes(_bootp.chaddr))
        except DecodingError as err:
            self.logger.debug("Dropping reply: %s", err)
            return None
        _xid = int(_bootp.xid)

        if self.strict_xid and self._xid_map.get(_xid) != _mac:
            self.logger.debug("Foreign reply for %s xid=0x%08x ignored.", _mac, _xid)
            return None

        try:
            return self._decode_reply(_packet, _mac, _xid)
        except DecodingError as err:
            self.logger.warning("Malformed reply for %s: %s", _mac, err)
            return ReplyRecord(source_mac=_mac, dhcp_type=None, xid=_xid)

    @staticmethod
    def _decode_reply(packet: Packet, mac: str, xid: int) -> OfferRecord | ReplyRecord:
        if DHCP not in packet:
            raise DecodingError("BOOTP reply without DHCP options.")

        _dhcp_type = DHCPUtilities.extract_dhcp_type_from_packet(packet)
        if _dhcp_type == DEFAULT_DHCP_TYPE:
            raise DecodingError("Missing message-type option.")

        _server = DHCPUtilities.extract_server_id_from_dhcp_packet(packet)
        _server = _server if DHCPUtilities.is_ipv4(_server) else ""

        if _dhcp_type != DHCPType.OFFER:
            return ReplyRecord(
                source_mac=mac,
                dhcp_type=_as_dhcp_type(_dhcp_type),
                dhcp_server=_server,
                xid=xid,
            )

        _offered_ip = str(packet[BOOTP].yiaddr)
        if not DHCPUtilities.is_ipv4(_offered_ip):
            raise DecodingError(f"Invalid yiaddr '{_offered_ip}'.")
        if not _server:
            raise DecodingError("Offer without a valid server identifier.")

        return OfferRecord(source_mac=mac, offered_ip=_offered_ip, dhcp_server=_server, xid=xid)

    def run(
        self,
        read_handle: ReadHandle,
        expected_count: int,
        events: "Queue[ProbeEvent]",
        deadline: float,
    ) -> SessionResult:
        """Read until `expected_count` replies were counted or `deadline` passes.

        Args:
            read_handle: Capture handle owned by this loop for its lifetime.
            expected_count: Replies to count before completing.
            events: Output stream, receives offers, other replies and the terminal event.
            deadline: Absolute time on this correlator's clock.
        Returns:
            SessionResult: The terminal result, also published on `events`.
        """
        if self.result is not None:
            raise RuntimeError("Correlator already finished.")

        self.expected = expected_count

        while self.replies < expected_count:
            if self._stop_event.is_set():
                self.logger.info("Receiver stopped before completion.")
                break
            _remaining = deadline - self._clock()
            if _remaining <= 0:
                break
            try:
                _data = read_handle.recv(min(_remaining, self.read_poll_timeout))
            except OSError as err:
                self.logger.error("Read path failed: %s", err)
                break
            if _data is None:
                continue

            _record = self.classify(_data)
            if _record is None:
                continue

            if self.state == ReceiverState.WAITING:
                self.state = ReceiverState.ACCUMULATING
            if _record.source_mac in self._answered:
                self.logger.warning(
                    "Repeat reply for %s from %s counted.",
                    _record.source_mac,
                    _record.dhcp_server or "unknown server",
                )
            self._answered.add(_record.source_mac)
            self.replies += 1

            if isinstance(_record, OfferRecord):
                self.offers += 1
                self.logger.info("Offer %s", _record)
                events.put(OfferEvent(_record))
            else:
                self.logger.info(
                    "Reply type %s for %s counted, no offer.",
                    _record.dhcp_type,
                    _record.source_mac,
                )
                events.put(ReplyEvent(_record))

        return self.finish(
            events,
            SessionStatus.COMPLETED
            if self.replies >= expected_count
            else SessionStatus.TIMED_OUT,
        )

    def stop(self):
        """Ask `run` to end with TIMED_OUT at its next pass."""
        self._stop_event.set()

    def finish(self, events: "Queue[ProbeEvent]", status: SessionStatus) -> SessionResult:
        """Publish the terminal event, at most once."""
        if self.result is not None:
            return self.result

        self.state = (
            ReceiverState.COMPLETE if status == SessionStatus.COMPLETED else ReceiverState.TIMED_OUT
        )
        self.result = SessionResult(
            status=status, offers=self.offers, replies=self.replies, expected=self.expected
        )
        if status == SessionStatus.COMPLETED:
            self.logger.info("All %d replies received.", self.replies)
        else:
            self.logger.info(
                "Timeout reached, %d of %d replies received.", self.replies, self.expected
            )
        events.put(TerminalEvent(self.result))
        return self.result
