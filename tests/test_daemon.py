"""Tests for the daemon's event processing and lifecycle."""

import asyncio

import pytest

from conftest import FakeClock, browse_event, dnssd_event
from printbridge.config import BrowsedConfig
from printbridge.daemon import BrowsedDaemon, Tick
from printbridge.registry import PrinterStatus
from printbridge.spooler.mock import MockSpooler


def make_config(**overrides) -> BrowsedConfig:
    data = {"browse": {"local_protocols": "none", "remote_protocols": "none"}}
    data.update(overrides)
    return BrowsedConfig.from_dict(data)


def make_daemon(config=None, spooler=None, clock=None) -> BrowsedDaemon:
    return BrowsedDaemon(
        config or make_config(),
        spooler or MockSpooler(),
        poll_spooler_factory=MockSpooler,
        clock=clock or FakeClock(),
    )


class TestProcess:
    @pytest.mark.asyncio
    async def test_event_schedules_reconcile_tick(self):
        daemon = make_daemon()
        await daemon.process(browse_event("192.0.2.9", "/printers/Office2"))

        assert len(daemon.state.registry) == 1
        assert daemon.state.scheduler.next_run < float("inf")

        # The timer is due at once and posts a tick instead of running a pass
        tick = await asyncio.wait_for(daemon.events.get(), timeout=1)
        assert tick is Tick.RECONCILE
        daemon.state.scheduler.cancel()

    @pytest.mark.asyncio
    async def test_reconcile_tick_creates_queue(self):
        spooler = MockSpooler()
        daemon = make_daemon(spooler=spooler)
        await daemon.process(browse_event("192.0.2.9", "/printers/Office2"))
        await daemon.process(Tick.RECONCILE)

        printer = daemon.state.registry.list_all()[0]
        assert printer.status == PrinterStatus.DISAPPEARED
        assert spooler.queues["Office2"].device_uri == "ipp://192.0.2.9:631/printers/Office2"
        assert daemon.state.scheduler.passes == 1
        daemon.state.scheduler.cancel()

    @pytest.mark.asyncio
    async def test_poll_batch(self):
        daemon = make_daemon()
        await daemon.process([
            browse_event("192.0.2.9", "/printers/A"),
            browse_event("192.0.2.9", "/printers/B"),
        ])
        assert sorted(p.name for p in daemon.state.registry) == ["A", "B"]
        assert not daemon.state.mirror.inhibited
        daemon.state.scheduler.cancel()

    @pytest.mark.asyncio
    async def test_advertise_tick_without_advertiser(self):
        daemon = make_daemon()
        await daemon.process(Tick.ADVERTISE)
        assert len(daemon.state.registry) == 0


def drain(daemon: BrowsedDaemon) -> list:
    items = []
    while not daemon.events.empty():
        items.append(daemon.events.get_nowait())
    return items


class TestDiscoveryServiceState:
    @pytest.mark.asyncio
    async def test_lost_browser_handled_by_consumer(self):
        daemon = make_daemon()
        event = dnssd_event("Office @ host1", "host1.local", "printers/Office",
                            txt={"product": "(HP LaserJet 400)", "rp": "printers/Office"})
        printer = await daemon.state.resolver.handle(event)

        daemon._dnssd_lost()
        assert printer.status == PrinterStatus.PENDING_CREATE
        assert Tick.DNSSD_LOST in drain(daemon)

        await daemon.process(Tick.DNSSD_LOST)
        assert printer.status == PrinterStatus.DISAPPEARED
        daemon.state.scheduler.cancel()

    @pytest.mark.asyncio
    async def test_avahi_mode_follows_browser(self):
        daemon = make_daemon(config=make_config(autoshutdown="avahi", autoshutdown_timeout=60))
        autoshutdown = daemon.state.autoshutdown
        assert not autoshutdown.enabled

        daemon._dnssd_lost()
        assert autoshutdown.enabled
        assert autoshutdown.pending

        daemon._dnssd_available()
        assert not autoshutdown.enabled
        assert not autoshutdown.pending

    @pytest.mark.asyncio
    async def test_off_mode_ignores_browser(self):
        daemon = make_daemon()
        daemon._dnssd_lost()
        assert not daemon.state.autoshutdown.enabled
        daemon._dnssd_available()
        assert not daemon.state.autoshutdown.enabled


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_queue_from_previous_session_removed_on_shutdown(self):
        spooler = MockSpooler()
        spooler.add_local_queue("Old", "ipp://192.0.2.50:631/printers/Old", owned_by_us=True)
        spooler.add_local_queue("Mine", "usb://HP/LaserJet")
        daemon = make_daemon(spooler=spooler)

        await daemon.start()
        printer = daemon.state.registry.list_all()[0]
        assert printer.name == "Old"
        assert printer.status == PrinterStatus.UNCONFIRMED

        await daemon.shutdown()
        assert "Old" not in spooler.queues
        assert "Mine" in spooler.queues
        assert len(daemon.state.registry) == 0

    @pytest.mark.asyncio
    async def test_queue_with_jobs_kept_on_shutdown(self):
        spooler = MockSpooler()
        spooler.add_local_queue("Old", "ipp://192.0.2.50:631/printers/Old", owned_by_us=True)
        spooler.jobs["Old"] = 2
        daemon = make_daemon(spooler=spooler)

        await daemon.start()
        await daemon.shutdown()
        assert "Old" in spooler.queues

    @pytest.mark.asyncio
    async def test_autoshutdown_stops_run(self):
        config = make_config(autoshutdown="on", autoshutdown_timeout=0)
        daemon = make_daemon(config=config)

        await asyncio.wait_for(daemon.run(), timeout=5)
        assert daemon.state.scheduler.passes == 1

    @pytest.mark.asyncio
    async def test_stop_ends_run(self):
        daemon = make_daemon()
        task = asyncio.create_task(daemon.run())
        await asyncio.sleep(0.05)
        daemon.stop()
        await asyncio.wait_for(task, timeout=5)
        assert task.done()
