import logging
from queue import Empty, Queue
from typing import Callable

import pytest
from scapy.layers.dhcp import BOOTP, DHCP
from scapy.layers.inet import IP, UDP
from scapy.layers.l2 import Ether
from scapy.utils import mac2str, str2mac

from models.models import DHCPType
from services.probe.exceptions import CapabilityOpenError, TransmissionError

SERVER_MAC = "02:00:00:00:00:01"
SERVER_IP = "192.168.20.1"


def make_reply(
    mac: str,
    xid: int,
    dhcp_type: int = DHCPType.OFFER,
    your_ip: str = "192.168.20.100",
    server_id: str | None = SERVER_IP,
) -> bytes:
    """Raw frame of a DHCP server reply addressed to `mac`."""
    _options: list = [("message-type", int(dhcp_type))]
    if server_id:
        _options.append(("server_id", server_id))
    _options.append("end")
    return bytes(
        Ether(src=SERVER_MAC, dst="ff:ff:ff:ff:ff:ff")
        / IP(src=SERVER_IP, dst="255.255.255.255")
        / UDP(sport=67, dport=68)
        / BOOTP(op=2, xid=xid, yiaddr=your_ip, chaddr=mac2str(mac))
        / DHCP(options=_options)
    )


def discover_fields(frame: bytes) -> tuple[str, int]:
    """(chaddr, xid) of a Discover frame."""
    _bootp = Ether(frame)[BOOTP]
    return str2mac(bytes(_bootp.chaddr)[:6]), int(_bootp.xid)


class FakeReadHandle:
    def __init__(self, frames: list[bytes] | None = None):
        self._queue: Queue = Queue()
        self.closed = False
        for _frame in frames or []:
            self.push(_frame)

    def push(self, data: bytes):
        self._queue.put(data)

    def recv(self, timeout: float) -> bytes | None:
        try:
            return self._queue.get(timeout=timeout)
        except Empty:
            return None

    def close(self):
        self.closed = True


class FakeWriteHandle:
    """Records frames, hands each one to `responder` whose replies land on `reader`."""

    def __init__(
        self,
        reader: FakeReadHandle | None = None,
        responder: Callable[[bytes], list[bytes]] | None = None,
        fail_for: tuple[str, ...] = (),
    ):
        self.reader = reader
        self.responder = responder
        self.fail_for = set(fail_for)
        self.frames: list[bytes] = []
        self.closed = False

    def send(self, data: bytes):
        if str2mac(data[6:12]) in self.fail_for:
            raise TransmissionError("simulated write failure")
        self.frames.append(data)
        if self.responder and self.reader:
            for _reply in self.responder(data):
                self.reader.push(_reply)

    def close(self):
        self.closed = True


class FakeCaptureFactory:
    def __init__(
        self,
        responder: Callable[[bytes], list[bytes]] | None = None,
        fail_writer: bool = False,
        fail_reader: bool = False,
        fail_for: tuple[str, ...] = (),
    ):
        self.reader = FakeReadHandle()
        self.writer = FakeWriteHandle(self.reader, responder, fail_for)
        self.fail_writer = fail_writer
        self.fail_reader = fail_reader
        self.opened: list[str] = []

    def open_writer(self, iface: str) -> FakeWriteHandle:
        if self.fail_writer:
            raise CapabilityOpenError(f"no write path on {iface}")
        self.opened.append("writer")
        return self.writer

    def open_reader(self, iface: str) -> FakeReadHandle:
        if self.fail_reader:
            raise CapabilityOpenError(f"no read path on {iface}")
        self.opened.append("reader")
        return self.reader


def offer_everyone(frame: bytes) -> list[bytes]:
    _mac, _xid = discover_fields(frame)
    _last_octet = int(_mac.split(":")[-1], 16)
    return [make_reply(_mac, _xid, your_ip=f"192.168.20.{_last_octet % 200 + 10}")]


@pytest.fixture
def logger() -> logging.Logger:
    return logging.getLogger("PROBE-TEST")


@pytest.fixture
def reader() -> FakeReadHandle:
    return FakeReadHandle()
