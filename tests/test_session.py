from ipaddress import IPv4Address
from threading import Event
from time import monotonic

import pytest
from scapy.layers.inet import IP, UDP
from scapy.layers.l2 import Ether

from conftest import FakeCaptureFactory, discover_fields, make_reply, offer_everyone
from models.models import DHCPType, OfferEvent, ReplyEvent, SessionStatus, TerminalEvent
from services.probe.exceptions import CapabilityOpenError, EncodingError
from services.probe.session import ProbeSession

AA = "aa:aa:aa:aa:aa:aa"
BB = "bb:bb:bb:bb:bb:bb"


def make_session(logger, addresses, capture, timeout=5.0, **kwargs) -> ProbeSession:
    return ProbeSession(
        addresses=addresses,
        iface="fake0",
        hostname="prober",
        capture=capture,
        timeout=timeout,
        seed=42,
        read_poll_timeout=0.05,
        logger=logger,
        **kwargs,
    )


def test_all_answered(logger):
    capture = FakeCaptureFactory(responder=offer_everyone)
    session = make_session(logger, [AA, BB], capture)

    offers, result = session.collect()

    assert result.status == SessionStatus.COMPLETED
    assert len(offers) == 2
    assert {offer.source_mac for offer in offers} == {AA, BB}
    for offer in offers:
        assert IPv4Address(offer.offered_ip)
        assert IPv4Address(offer.dhcp_server)
    assert capture.writer.closed and capture.reader.closed


def test_partial_answer_times_out(logger):
    def offer_aa_only(frame: bytes) -> list[bytes]:
        mac, xid = discover_fields(frame)
        return [make_reply(mac, xid)] if mac == AA else []

    capture = FakeCaptureFactory(responder=offer_aa_only)
    session = make_session(logger, [AA, BB], capture, timeout=0.5)

    offers, result = session.collect()

    assert result.status == SessionStatus.TIMED_OUT
    assert [offer.source_mac for offer in offers] == [AA]
    assert result.unanswered == 1
    assert capture.writer.closed and capture.reader.closed


def test_empty_address_list(logger):
    capture = FakeCaptureFactory(responder=offer_everyone)
    session = make_session(logger, [], capture, timeout=30)

    offers, result = session.collect()

    assert offers == []
    assert result.status == SessionStatus.COMPLETED
    assert capture.writer.frames == []


def test_nak_counts_toward_completion(logger):
    def nak_bb(frame: bytes) -> list[bytes]:
        mac, xid = discover_fields(frame)
        dhcp_type = DHCPType.NAK if mac == BB else DHCPType.OFFER
        return [make_reply(mac, xid, dhcp_type=dhcp_type)]

    session = make_session(logger, [AA, BB], FakeCaptureFactory(responder=nak_bb))

    events = list(session.run())

    assert isinstance(events[-1], TerminalEvent)
    assert events[-1].result.status == SessionStatus.COMPLETED
    assert events[-1].result.offers == 1
    offers = [event.record for event in events if isinstance(event, OfferEvent)]
    replies = [event.record for event in events if isinstance(event, ReplyEvent)]
    assert [offer.source_mac for offer in offers] == [AA]
    assert [(reply.source_mac, reply.dhcp_type) for reply in replies] == [(BB, DHCPType.NAK)]


def test_transmitted_frames(logger):
    capture = FakeCaptureFactory(responder=offer_everyone)
    session = make_session(logger, [AA, BB], capture)
    session.collect()

    assert len(capture.writer.frames) == 2
    for frame, mac in zip(capture.writer.frames, [AA, BB]):
        packet = Ether(frame)
        assert packet[Ether].dst == "ff:ff:ff:ff:ff:ff"
        assert packet[Ether].src == mac
        assert packet[IP].dst == "255.255.255.255"
        assert packet[UDP].sport == 68
        assert packet[UDP].dport == 67
        assert discover_fields(frame) == (mac, session.xids[mac])


def test_xids_per_address(logger):
    first = make_session(logger, [AA, BB], FakeCaptureFactory())
    second = make_session(logger, [AA, BB], FakeCaptureFactory())

    # Positive
    assert first.xids == second.xids
    assert first.template.xid == second.template.xid

    # Negative
    assert first.xids[AA] != first.xids[BB]


def test_addresses_normalized(logger):
    session = make_session(logger, ["AA-AA-AA-AA-AA-AA", AA, BB], FakeCaptureFactory())
    assert session.addresses == [AA, BB]

    with pytest.raises(EncodingError):
        make_session(logger, [AA, "not-a-mac"], FakeCaptureFactory())


def test_hostname_option(logger):
    session = make_session(logger, [AA], FakeCaptureFactory(), include_hostname=True)
    assert session.template.hostname == "prober"

    session = make_session(logger, [AA], FakeCaptureFactory())
    assert session.template.hostname == ""


@pytest.mark.parametrize("fail_writer,fail_reader", [(True, False), (False, True)])
def test_capability_open_failure(logger, fail_writer, fail_reader):
    capture = FakeCaptureFactory(
        responder=offer_everyone, fail_writer=fail_writer, fail_reader=fail_reader
    )
    session = make_session(logger, [AA, BB], capture)

    with pytest.raises(CapabilityOpenError):
        session.start()

    assert capture.writer.frames == []
    if fail_reader:
        assert capture.writer.closed
    with pytest.raises(RuntimeError):
        next(session.events())


def test_send_failure_not_fatal(logger):
    capture = FakeCaptureFactory(responder=offer_everyone, fail_for=(AA,))
    session = make_session(logger, [AA, BB], capture, timeout=0.5)

    offers, result = session.collect()

    assert [offer.source_mac for offer in offers] == [BB]
    assert result.status == SessionStatus.TIMED_OUT
    assert session.report.sent == [BB]
    assert list(session.report.failed) == [AA]


def test_start_twice(logger):
    session = make_session(logger, [AA], FakeCaptureFactory(responder=offer_everyone))
    session.start()
    try:
        with pytest.raises(RuntimeError):
            session.start()
    finally:
        session.stop()


def test_context_manager_releases(logger):
    capture = FakeCaptureFactory()
    with make_session(logger, [AA], capture, timeout=0.2) as session:
        session.start()

    assert capture.writer.closed and capture.reader.closed


def test_stop_while_waiting(logger):
    capture = FakeCaptureFactory()
    session = make_session(logger, [AA, BB], capture, timeout=30)
    events = session.start()
    workers = list(session._workers.values())

    _started = monotonic()
    session.stop()

    assert monotonic() - _started < 2.0
    assert not any(worker.is_alive() for worker in workers)
    assert session.result is not None
    assert session.result.status == SessionStatus.TIMED_OUT
    assert session.correlator.state.is_terminal
    assert isinstance(events.get_nowait(), TerminalEvent)
    assert capture.writer.closed and capture.reader.closed


def test_shared_stop_event_ends_stream(logger):
    stop_event = Event()
    capture = FakeCaptureFactory()
    session = make_session(logger, [AA], capture, timeout=30, stop_event=stop_event)

    session.start()
    stop_event.set()
    events = list(session.events())

    assert len(events) == 1
    assert events[0].result.status == SessionStatus.TIMED_OUT
    assert capture.reader.closed


def test_loose_xid_accepts_foreign_transaction(logger):
    def offer_other_xid(frame: bytes) -> list[bytes]:
        mac, xid = discover_fields(frame)
        return [make_reply(mac, (xid + 1) & 0xFFFFFFFF)]

    # Positive
    loose = make_session(
        logger, [AA, BB], FakeCaptureFactory(responder=offer_other_xid), strict_xid=False
    )
    offers, result = loose.collect()
    assert result.status == SessionStatus.COMPLETED
    assert {offer.source_mac for offer in offers} == {AA, BB}

    # Negative
    strict = make_session(
        logger, [AA, BB], FakeCaptureFactory(responder=offer_other_xid), timeout=0.3
    )
    offers, result = strict.collect()
    assert result.status == SessionStatus.TIMED_OUT
    assert offers == []
