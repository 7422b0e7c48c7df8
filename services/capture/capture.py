"""Raw link-layer capture handles.

The probe engine only needs four things from the network: open a handle it
can write frames to, open a handle it can read frames from, send a buffer
and receive a buffer or time out. The protocols below describe that
capability; `ScapyCaptureFactory` provides it on a live interface.
"""

from typing import Protocol

from scapy.config import conf
from scapy.error import Scapy_Exception

from config.config import config
from services.probe.exceptions import CapabilityOpenError, TransmissionError
from utils.dhcp_utils import is_net_interface_valid

CAPTURE_FILTER = str(config.get("probe", "capture_filter"))


class WriteHandle(Protocol):
    def send(self, data: bytes) -> None: ...

    def close(self) -> None: ...


class ReadHandle(Protocol):
    def recv(self, timeout: float) -> bytes | None: ...

    def close(self) -> None: ...


class CaptureFactory(Protocol):
    def open_writer(self, iface: str) -> WriteHandle: ...

    def open_reader(self, iface: str) -> ReadHandle: ...


class ScapyWriteHandle:
    """Layer 2 socket used to inject frames as-is."""

    def __init__(self, iface: str):
        self.iface = iface
        try:
            self._socket = conf.L2socket(iface=iface)
        except (OSError, Scapy_Exception, ValueError) as err:
            raise CapabilityOpenError(f"Cannot open write handle on {iface}: {err}") from err

    def send(self, data: bytes) -> None:
        if self._socket is None:
            raise TransmissionError("Write handle closed.")
        try:
            self._socket.send(data)
        except (OSError, Scapy_Exception) as err:
            raise TransmissionError(f"Write on {self.iface} failed: {err}") from err

    def close(self) -> None:
        if self._socket is not None:
            self._socket.close()
            self._socket = None


class ScapyReadHandle:
    """Filtered layer 2 listener polled with a timeout."""

    def __init__(self, iface: str, capture_filter: str = CAPTURE_FILTER):
        self.iface = iface
        try:
            self._socket = conf.L2listen(iface=iface, filter=capture_filter)
        except (OSError, Scapy_Exception, ValueError) as err:
            raise CapabilityOpenError(f"Cannot open read handle on {iface}: {err}") from err

    def recv(self, timeout: float) -> bytes | None:
        """Next raw frame, or None when nothing arrived within `timeout` seconds.

        Raises:
            OSError: The handle was closed.
        """
        if self._socket is None:
            raise OSError("Read handle closed.")
        if not self._socket.select([self._socket], max(timeout, 0.0)):
            return None
        _, data, _ = self._socket.recv_raw()
        return data or None

    def close(self) -> None:
        if self._socket is not None:
            self._socket.close()
            self._socket = None


class ScapyCaptureFactory:
    """Opens scapy capture handles on a named interface."""

    def __init__(self, capture_filter: str = CAPTURE_FILTER):
        self.capture_filter = capture_filter

    @staticmethod
    def _check_interface(iface: str):
        if not is_net_interface_valid(iface):
            raise CapabilityOpenError(f"Invalid Interface: {iface}")

    def open_writer(self, iface: str) -> ScapyWriteHandle:
        self._check_interface(iface)
        return ScapyWriteHandle(iface)

    def open_reader(self, iface: str) -> ScapyReadHandle:
        self._check_interface(iface)
        return ScapyReadHandle(iface, capture_filter=self.capture_filter)
