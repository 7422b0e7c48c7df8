from dataclasses import dataclass, field
from logging import Logger
from threading import Event
from typing import Iterable, Mapping

from services.capture.capture import WriteHandle
from services.probe.exceptions import EncodingError, TransmissionError
from services.probe.frame import FrameTemplate, build_frame


@dataclass
class TransmitReport:
    """Outcome of one pass over the address list."""

    sent: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return len(self.sent) + len(self.failed)


class Transmitter:
    """
    Pushes one Discover frame per address onto the wire.

    Frames are written sequentially in caller order. Nothing is read back;
    replies are the correlator's job. A failure for one address is logged
    and recorded, the remaining addresses are still sent.
    """

    def __init__(self, logger: Logger):
        self.logger = logger

    def send(
        self,
        write_handle: WriteHandle,
        template: FrameTemplate,
        addresses: Iterable[str],
        xids: Mapping[str, int] | None = None,
        stop_event: Event | None = None,
    ) -> TransmitReport:
        report = TransmitReport()

        for _mac in addresses:
            if stop_event is not None and stop_event.is_set():
                self.logger.info("Discover pass interrupted before %s.", _mac)
                break
            _xid = xids.get(_mac) if xids else None
            try:
                _frame = build_frame(template, _mac, xid=_xid)
                write_handle.send(_frame)
            except (EncodingError, TransmissionError) as err:
                self.logger.warning("Discover for %s not sent: %s", _mac, err)
                report.failed[_mac] = str(err)
                continue

            self.logger.debug(
                "Sent discover for %s xid=0x%08x (%d bytes).",
                _mac,
                template.xid if _xid is None else _xid,
                len(_frame),
            )
            report.sent.append(_mac)

        self.logger.info(
            "Discover pass done: %d of %d sent, %d failed.",
            len(report.sent),
            report.total,
            len(report.failed),
        )
        return report
