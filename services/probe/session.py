from functools import wraps
from logging import Logger
from queue import Queue
from random import Random
from threading import Event, RLock, Thread
from time import monotonic
from typing import Callable, Iterable, Iterator

from config.config import config
from models.models import (
    OfferEvent,
    OfferRecord,
    ProbeEvent,
    SessionResult,
    SessionStatus,
    TerminalEvent,
)
from services.capture.capture import (
    CaptureFactory,
    ReadHandle,
    ScapyCaptureFactory,
    WriteHandle,
)
from services.logger.logger import MainLogger
from services.probe.exceptions import CapabilityOpenError
from services.probe.frame import FrameTemplate
from services.probe.receiver import READ_POLL_TIMEOUT, OfferCorrelator
from services.probe.transmitter import TransmitReport, Transmitter
from utils.dhcp_utils import DHCPUtilities

PROBE_CONFIG = config.get("probe")
INTERFACE = str(PROBE_CONFIG.get("interface"))
HOSTNAME = str(PROBE_CONFIG.get("hostname"))
SEND_HOSTNAME = bool(PROBE_CONFIG.get("send_hostname"))
SESSION_TIMEOUT = float(PROBE_CONFIG.get("timeout_seconds"))
STRICT_XID = bool(PROBE_CONFIG.get("strict_xid"))
WORKER_JOIN_TIMEOUT = float(PROBE_CONFIG.get("worker_join_seconds"))

probe_logger: Logger = MainLogger.get_logger(service_name="PROBE", log_level="debug")


def session_is_started(func):
    @wraps(func)
    def wrapper(self, *args, **kwargs):
        if getattr(self, "_started", False) is False:
            raise RuntimeError("Session not started")
        return func(self, *args, **kwargs)

    return wrapper


def session_is_not_started(func):
    @wraps(func)
    def wrapper(self, *args, **kwargs):
        if getattr(self, "_started", False) is True:
            raise RuntimeError("Session already started")
        return func(self, *args, **kwargs)

    return wrapper


class ProbeSession:
    """
    Probes a DHCP server on behalf of a list of hardware addresses.

    ### Main Features:
    - Sends one spoofed DHCP Discover per address.
    - Correlates DHCP Offers back to the probed addresses.
    - Streams offers as they arrive, followed by exactly one terminal event.
    - Ends when every address got a reply or when the timeout elapses.

    ### Key Dependencies:
    - `CaptureFactory` for the write and read capture handles.
    - `Transmitter` for the send path, `OfferCorrelator` for the receive path.
    - `config["probe"]` for defaults.

    ### Lifecycle:
    - Build with the address list, invalid addresses raise `EncodingError`.
    - `start()` acquires both handles, raises `CapabilityOpenError` if either fails.
    - Iterate `events()` until the `TerminalEvent`, handles are released after it.
    - `run()` does both, `collect()` gathers everything into a list.
    - `stop()` or a set `stop_event` ends the stream early as timed out.
    """

    def __init__(
        self,
        addresses: Iterable[str],
        iface: str = INTERFACE,
        hostname: str = HOSTNAME,
        capture: CaptureFactory | None = None,
        timeout: float = SESSION_TIMEOUT,
        seed: int | None = None,
        include_hostname: bool = SEND_HOSTNAME,
        strict_xid: bool = STRICT_XID,
        read_poll_timeout: float = READ_POLL_TIMEOUT,
        worker_join_timeout: float = WORKER_JOIN_TIMEOUT,
        logger: Logger = probe_logger,
        clock: Callable[[], float] = monotonic,
        stop_event: Event | None = None,
    ):
        _normalized = [DHCPUtilities.normalize_mac(_mac) for _mac in addresses]
        self.addresses: list[str] = list(dict.fromkeys(_normalized))
        if len(self.addresses) != len(_normalized):
            logger.warning(
                "Dropped %d duplicate addresses.", len(_normalized) - len(self.addresses)
            )

        self.iface = iface
        self.hostname = hostname
        self.timeout = timeout
        self.worker_join_timeout = worker_join_timeout
        self.logger = logger
        self._clock = clock
        self._capture: CaptureFactory = capture or ScapyCaptureFactory()

        self._rng = Random(seed)
        self.xids: dict[str, int] = {}
        for _mac in self.addresses:
            _xid = self._rng.getrandbits(32)
            while _xid in self.xids.values():
                _xid = self._rng.getrandbits(32)
            self.xids[_mac] = _xid

        self.template = FrameTemplate(
            xid=self._rng.getrandbits(32),
            hostname=hostname if include_hostname else "",
        )
        self._stop_event = stop_event or Event()
        self.transmitter = Transmitter(logger=logger)
        self.correlator = OfferCorrelator(
            logger=logger,
            xid_map={_xid: _mac for _mac, _xid in self.xids.items()},
            strict_xid=strict_xid,
            read_poll_timeout=read_poll_timeout,
            clock=clock,
            stop_event=self._stop_event,
        )

        self._lock = RLock()
        self._events: "Queue[ProbeEvent]" = Queue()
        self._workers: dict[str, Thread] = {}
        self._write_handle: WriteHandle | None = None
        self._read_handle: ReadHandle | None = None
        self._started = False
        self.report: TransmitReport | None = None

    def __enter__(self) -> "ProbeSession":
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.stop()

    @property
    def result(self) -> SessionResult | None:
        return self.correlator.result

    @session_is_not_started
    def start(self) -> "Queue[ProbeEvent]":
        """Acquire both capture handles and launch the receive and send paths.

        Returns:
            Queue[ProbeEvent]: The event stream, also consumed by `events()`.
        Raises:
            CapabilityOpenError: Either handle could not be opened. Nothing was sent.
        """
        with self._lock:
            try:
                self._write_handle = self._capture.open_writer(self.iface)
                self._read_handle = self._capture.open_reader(self.iface)
            except CapabilityOpenError as err:
                self.logger.error("Cannot start probe on %s: %s", self.iface, err)
                self._release()
                raise

            self._started = True
            _deadline = self._clock() + self.timeout
            self.logger.info(
                "Probing %d addresses on %s, timeout %.1fs.",
                len(self.addresses),
                self.iface,
                self.timeout,
            )

            _receiver = Thread(
                target=self._receive, args=(_deadline,), name="probe-receiver", daemon=True
            )
            _receiver.start()
            self._workers["probe-receiver"] = _receiver

            _transmitter = Thread(target=self._transmit, name="probe-transmitter", daemon=True)
            _transmitter.start()
            self._workers["probe-transmitter"] = _transmitter

            return self._events

    @session_is_started
    def events(self) -> Iterator[ProbeEvent]:
        """Yield events as they are published, the `TerminalEvent` last."""
        try:
            while True:
                _event = self._events.get()
                yield _event
                if isinstance(_event, TerminalEvent):
                    return
        finally:
            self.stop()

    def run(self) -> Iterator[ProbeEvent]:
        """Start the session and stream its events."""
        self.start()
        yield from self.events()

    def collect(self) -> tuple[list[OfferRecord], SessionResult]:
        """Run to the end, returning the offers and the terminal result."""
        _offers: list[OfferRecord] = []
        _result: SessionResult | None = None
        for _event in self.run():
            if isinstance(_event, OfferEvent):
                _offers.append(_event.record)
            elif isinstance(_event, TerminalEvent):
                _result = _event.result
        if _result is None:
            raise RuntimeError("Session ended without a terminal status.")
        return _offers, _result

    def stop(self):
        """Signal the workers, join them, then release both handles.

        A receiver still reading ends with `TIMED_OUT` at its next poll, so
        the terminal event is published before the read handle is closed.
        Safe to call repeatedly.
        """
        with self._lock:
            if self._workers:
                self._stop_event.set()
            _join_timeout = self.worker_join_timeout + self.correlator.read_poll_timeout
            for _name, _thread in self._workers.items():
                if _thread.is_alive():
                    _thread.join(timeout=_join_timeout)
                    if _thread.is_alive():
                        self.logger.warning("%s did not stop in time.", _name)
            if self._started and not self.correlator.state.is_terminal:
                self.logger.warning("Receiver not finished, releasing handles anyway.")
            self._workers.clear()
            self._release()

    def _release(self):
        for _handle in (self._write_handle, self._read_handle):
            if _handle is None:
                continue
            try:
                _handle.close()
            except OSError as err:
                self.logger.warning("Error closing capture handle: %s", err)
        self._write_handle = None
        self._read_handle = None

    def _receive(self, deadline: float):
        try:
            self.correlator.run(
                read_handle=self._read_handle,
                expected_count=len(self.addresses),
                events=self._events,
                deadline=deadline,
            )
        except Exception as err:
            self.logger.exception("Receiver failed: %s", err)
        finally:
            self.correlator.finish(self._events, SessionStatus.TIMED_OUT)

    def _transmit(self):
        try:
            self.report = self.transmitter.send(
                write_handle=self._write_handle,
                template=self.template,
                addresses=self.addresses,
                xids=self.xids,
                stop_event=self._stop_event,
            )
        except Exception as err:
            self.logger.exception("Transmitter failed: %s", err)
