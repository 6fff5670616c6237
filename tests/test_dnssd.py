"""Tests for the DNS-SD browser's record handling."""

import asyncio
from types import SimpleNamespace

import pytest
from zeroconf import ServiceStateChange

from printbridge.discovery.dnssd import DNSSDBrowser, decode_txt, split_service_name
from printbridge.registry import DiscoverySource, EventKind


def service_info(addresses, server="printer.local.", port=631, properties=None):
    return SimpleNamespace(
        parsed_addresses=lambda: list(addresses),
        server=server,
        port=port,
        properties=properties or {},
    )


class TestSplitServiceName:
    def test_split(self):
        assert split_service_name("Office._ipp._tcp.local.", "_ipp._tcp.local.") == (
            "Office", "_ipp._tcp", "local",
        )

    def test_instance_with_dots(self):
        instance, short_type, _ = split_service_name("HP 4.0 (lab)._ipps._tcp.local.", "_ipps._tcp.local.")
        assert instance == "HP 4.0 (lab)"
        assert short_type == "_ipps._tcp"


class TestDecodeTXT:
    def test_bytes_and_empty_values(self):
        assert decode_txt({b"rp": b"ipp/print", b"Color": None}) == {"rp": "ipp/print", "Color": ""}

    def test_none(self):
        assert decode_txt(None) == {}


class TestEventFromInfo:
    def test_announce_event(self):
        browser = DNSSDBrowser(sink=lambda event: None)
        info = service_info(["192.0.2.20"], properties={b"rp": b"printers/Lab", b"ty": b"Lab Printer"})

        event = browser.event_from_info("_ipp._tcp.local.", "Lab._ipp._tcp.local.", info)

        assert event.kind == EventKind.ANNOUNCE
        assert event.source == DiscoverySource.DNSSD
        assert event.host == "printer.local"
        assert event.resource == "printers/Lab"
        assert (event.service_name, event.service_type, event.service_domain) == ("Lab", "_ipp._tcp", "local")
        assert event.txt["ty"] == "Lab Printer"

    def test_own_service_ignored(self):
        browser = DNSSDBrowser(sink=lambda event: None, local_addresses=lambda: {"192.0.2.1"})
        info = service_info(["192.0.2.1"])
        assert browser.event_from_info("_ipp._tcp.local.", "Me._ipp._tcp.local.", info) is None

    def test_address_used_without_server_name(self):
        browser = DNSSDBrowser(sink=lambda event: None)
        info = service_info(["192.0.2.30"], server=None, port=0)

        event = browser.event_from_info("_ipp._tcp.local.", "X._ipp._tcp.local.", info)
        assert event.host == "192.0.2.30"
        assert event.port == 631

    def test_no_address_no_server(self):
        browser = DNSSDBrowser(sink=lambda event: None)
        info = service_info([], server="")
        assert browser.event_from_info("_ipp._tcp.local.", "X._ipp._tcp.local.", info) is None


class TestStateChanges:
    @pytest.mark.asyncio
    async def test_updated_service_resolved_again(self):
        browser = DNSSDBrowser(sink=lambda event: None)
        resolved = []

        async def record(service_type, name):
            resolved.append((service_type, name))

        browser._resolve = record
        browser._on_state_change(None, "_ipp._tcp.local.", "Lab._ipp._tcp.local.", ServiceStateChange.Added)
        browser._on_state_change(None, "_ipp._tcp.local.", "Lab._ipp._tcp.local.", ServiceStateChange.Updated)
        await asyncio.sleep(0)

        assert resolved == [("_ipp._tcp.local.", "Lab._ipp._tcp.local.")] * 2

    def test_removed_service_withdrawn(self):
        events = []
        browser = DNSSDBrowser(sink=events.append)
        browser._on_state_change(None, "_ipps._tcp.local.", "Lab._ipps._tcp.local.", ServiceStateChange.Removed)

        assert len(events) == 1
        assert events[0].kind == EventKind.WITHDRAW
        assert (events[0].service_name, events[0].service_type, events[0].service_domain) == (
            "Lab", "_ipps._tcp", "local",
        )
