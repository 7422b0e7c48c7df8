import sys
from argparse import ArgumentParser, Namespace
from logging import Logger
from signal import SIGABRT, SIGINT, SIGQUIT, SIGTERM, signal
from threading import Event

from config.config import config
from models.models import LogLevel, OfferEvent, ReplyEvent, TerminalEvent
from services.logger.logger import MainLogger
from services.probe.exceptions import CapabilityOpenError, EncodingError
from services.probe.session import ProbeSession

PROBE_CONFIG = config.get("probe")
EXIT_FAILURE = 2

logger: Logger = MainLogger.get_logger(service_name="MAIN", log_level="info")
shutdown_event = Event()


def shutdown_handler(signum: int, frame):
    """Handles interrupt calls, the running session ends as timed out.

    Args:
        signum (int): The signal number received.
        frame (frame object): Current stack frame.

    """
    logger.info("Received %s.", signum)
    shutdown_event.set()


def register_shutdown_signals():
    """Registers shutdown handler for common interrupt signals"""
    signal(SIGINT, shutdown_handler)
    signal(SIGTERM, shutdown_handler)
    signal(SIGQUIT, shutdown_handler)
    signal(SIGABRT, shutdown_handler)


def parse_args(argv: list[str] | None = None) -> Namespace:
    """Command line, defaults from config["probe"]."""
    parser = ArgumentParser(
        description="Send a DHCP Discover for every MAC and report the offers received."
    )
    parser.add_argument(
        "macs",
        nargs="*",
        default=PROBE_CONFIG.get("addresses"),
        help="MAC addresses to probe, aa:bb:cc:dd:ee:ff",
    )
    parser.add_argument("-i", "--iface", default=PROBE_CONFIG.get("interface"))
    parser.add_argument("-n", "--hostname", default=PROBE_CONFIG.get("hostname"))
    parser.add_argument(
        "--send-hostname",
        action="store_true",
        default=PROBE_CONFIG.get("send_hostname"),
        help="Add the hostname as option 12 of every Discover",
    )
    parser.add_argument(
        "-t", "--timeout", type=float, default=PROBE_CONFIG.get("timeout_seconds")
    )
    parser.add_argument("--seed", type=int, default=None, help="Transaction id seed")
    parser.add_argument(
        "--log-level",
        default=None,
        choices=[_level.name.lower() for _level in LogLevel],
        help="Level for every service logger",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    if args.log_level:
        MainLogger.set_level(args.log_level)
    shutdown_event.clear()
    register_shutdown_signals()

    try:
        session = ProbeSession(
            addresses=args.macs,
            iface=args.iface,
            hostname=args.hostname,
            timeout=args.timeout,
            seed=args.seed,
            include_hostname=args.send_hostname,
            stop_event=shutdown_event,
        )
        status = None
        for event in session.run():
            if isinstance(event, OfferEvent):
                logger.info("%s", event.record.to_dict())
            elif isinstance(event, ReplyEvent):
                logger.info("No offer: %s", event.record.to_dict())
            elif isinstance(event, TerminalEvent):
                if event.result.status:
                    logger.info("Timeout reached")
                else:
                    logger.info("Test finished")
                logger.info("%s", event.result.to_dict())
                status = int(event.result.status)

    except (CapabilityOpenError, EncodingError) as err:
        logger.error("%s", err)
        return EXIT_FAILURE

    return EXIT_FAILURE if status is None else status


if __name__ == "__main__":
    sys.exit(main())
