import signal

import pytest

import main as entry
from main import EXIT_FAILURE, main, parse_args

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM, signal.SIGQUIT, signal.SIGABRT)


@pytest.fixture(autouse=True)
def restore_signals():
    _previous = {_signum: signal.getsignal(_signum) for _signum in SHUTDOWN_SIGNALS}
    yield
    for _signum, _handler in _previous.items():
        if _handler is not None:
            signal.signal(_signum, _handler)
    entry.shutdown_event.clear()


def test_parse_args_defaults():
    args = parse_args([])

    assert args.macs == []
    assert args.timeout == 30
    assert args.send_hostname is False
    assert args.seed is None


def test_parse_args():
    args = parse_args(
        ["-i", "enp0s31f6", "-n", "vale-laptop", "-t", "2.5", "--send-hostname", "--seed", "7",
         "11:22:33:44:55:66", "84:7b:eb:27:0c:a4"]
    )

    assert args.iface == "enp0s31f6"
    assert args.hostname == "vale-laptop"
    assert args.timeout == 2.5
    assert args.send_hostname is True
    assert args.seed == 7
    assert args.macs == ["11:22:33:44:55:66", "84:7b:eb:27:0c:a4"]


def test_main_invalid_mac():
    assert main(["-i", "lo", "not-a-mac"]) == EXIT_FAILURE


def test_main_unknown_interface():
    assert main(["-i", "no-such-iface0", "11:22:33:44:55:66"]) == EXIT_FAILURE


def test_register_shutdown_signals():
    entry.register_shutdown_signals()

    for _signum in SHUTDOWN_SIGNALS:
        assert signal.getsignal(_signum) is entry.shutdown_handler


def test_shutdown_handler_sets_event():
    assert not entry.shutdown_event.is_set()

    entry.shutdown_handler(signal.SIGTERM, None)

    assert entry.shutdown_event.is_set()


def test_main_clears_stale_shutdown(monkeypatch):
    captured = {}

    class RecordingSession:
        def __init__(self, **kwargs):
            captured.update(kwargs)
            raise entry.EncodingError("stop here")

    entry.shutdown_event.set()
    monkeypatch.setattr(entry, "ProbeSession", RecordingSession)

    assert main(["-i", "lo", "11:22:33:44:55:66"]) == EXIT_FAILURE
    assert captured["stop_event"] is entry.shutdown_event
    assert not captured["stop_event"].is_set()


def test_parse_args_log_level():
    assert parse_args(["--log-level", "warning"]).log_level == "warning"
    assert parse_args([]).log_level is None
