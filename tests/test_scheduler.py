"""Tests for the reconciliation state machine and auto-shutdown."""

import asyncio
import os

import pytest

from conftest import browse_event, dnssd_event
from printbridge.registry import NEVER, PrinterKind, PrinterStatus, RemotePrinter
from printbridge.scheduler import AutoShutdown


def entry(name="Office", status=PrinterStatus.PENDING_CREATE, deadline=0.0, **kwargs):
    return RemotePrinter(
        name=name,
        uri=f"ipp://host1.local:631/printers/{name}",
        host="host1",
        status=status,
        deadline=deadline,
        **kwargs,
    )


class TestCreate:
    @pytest.mark.asyncio
    async def test_pending_entry_provisioned_and_confirmed(self, scheduler, registry, spooler):
        printer = entry()
        registry.add(printer)

        await scheduler.run_pass()

        assert printer.status == PrinterStatus.CONFIRMED
        assert printer.deadline == NEVER
        assert spooler.queues["Office"].device_uri == printer.uri
        assert spooler.definitions["Office"].is_raw

    @pytest.mark.asyncio
    async def test_future_deadline_waits(self, scheduler, registry, spooler, clock):
        registry.add(entry(deadline=clock() + 5))
        await scheduler.run_pass()
        assert "Office" not in spooler.queues
        assert scheduler.next_run == clock() + 5

    @pytest.mark.asyncio
    async def test_spooler_rejection_retried(self, scheduler, registry, spooler, clock):
        spooler.fail_once.add("create_or_modify_queue")
        printer = entry()
        registry.add(printer)

        await scheduler.run_pass()
        assert printer.status == PrinterStatus.PENDING_CREATE
        assert printer.deadline == clock() + 10

        clock.advance(10)
        await scheduler.run_pass()
        assert printer.status == PrinterStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_unreachable_spooler_retried(self, scheduler, registry, spooler, clock):
        spooler.available = False
        printer = entry()
        registry.add(printer)

        await scheduler.run_pass()
        assert printer.status == PrinterStatus.PENDING_CREATE
        assert printer.deadline == clock() + 10

    @pytest.mark.asyncio
    async def test_pending_duplicate_never_provisioned(self, scheduler, registry, spooler):
        printer = entry(is_duplicate=True)
        registry.add(printer)

        await scheduler.run_pass()
        assert printer.deadline == NEVER
        assert printer.status == PrinterStatus.PENDING_CREATE
        assert "Office" not in spooler.queues

    @pytest.mark.asyncio
    async def test_native_printer_gets_interface_script(self, resolver, scheduler, spooler, tmp_path):
        event = dnssd_event("Office Printer", "192.0.2.5", "ipp/print", txt={"pdl": "application/pdf"})
        printer = await resolver.handle(event)

        await scheduler.run_pass()

        assert printer.kind == PrinterKind.NETWORK_PRINTER
        assert printer.status == PrinterStatus.CONFIRMED
        definition = spooler.definitions["printer"]
        assert definition.script_path is not None
        assert os.path.dirname(definition.script_path) == str(tmp_path)
        # Generated files are gone once the spooler has them
        assert not os.path.exists(definition.script_path)


class TestRemove:
    @pytest.mark.asyncio
    async def test_disappeared_entry_removed(self, scheduler, registry, spooler):
        spooler.add_local_queue("Office", "ipp://host1.local:631/printers/Office", owned_by_us=True)
        registry.add(entry(status=PrinterStatus.DISAPPEARED))

        await scheduler.run_pass()

        assert len(registry) == 0
        assert "Office" not in spooler.queues

    @pytest.mark.asyncio
    async def test_active_jobs_postpone_removal(self, scheduler, registry, spooler, clock):
        spooler.add_local_queue("Office", "ipp://host1.local:631/printers/Office", owned_by_us=True)
        spooler.jobs["Office"] = 2
        printer = entry(status=PrinterStatus.DISAPPEARED)
        registry.add(printer)

        await scheduler.run_pass()

        assert printer.status == PrinterStatus.DISAPPEARED
        assert printer.deadline == clock() + 10
        assert "Office" in spooler.queues

        spooler.jobs["Office"] = 0
        clock.advance(10)
        await scheduler.run_pass()
        assert "Office" not in spooler.queues

    @pytest.mark.asyncio
    async def test_default_printer_kept(self, scheduler, registry, spooler, clock):
        spooler.add_local_queue("Office", "ipp://host1.local:631/printers/Office", owned_by_us=True)
        spooler.default_queue = "office"
        printer = entry(status=PrinterStatus.DISAPPEARED)
        registry.add(printer)

        await scheduler.run_pass()

        assert printer in registry.list_all()
        assert printer.deadline == clock() + 10
        assert "Office" in spooler.queues

    @pytest.mark.asyncio
    async def test_failed_delete_retried(self, scheduler, registry, spooler, clock):
        spooler.add_local_queue("Office", "ipp://host1.local:631/printers/Office", owned_by_us=True)
        spooler.fail_once.add("delete_queue")
        printer = entry(status=PrinterStatus.DISAPPEARED)
        registry.add(printer)

        await scheduler.run_pass()
        assert printer in registry.list_all()
        assert printer.deadline == clock() + 10

    @pytest.mark.asyncio
    async def test_duplicate_removed_without_touching_queue(self, scheduler, registry, spooler):
        spooler.add_local_queue("Office", "ipp://host1.local:631/printers/Office", owned_by_us=True)
        registry.add(entry(status=PrinterStatus.DISAPPEARED, is_duplicate=True))

        await scheduler.run_pass()

        assert len(registry) == 0
        assert "Office" in spooler.queues
        assert not [c for c in spooler.calls if c[0] == "delete_queue"]

    @pytest.mark.asyncio
    async def test_unconfirmed_entry_removed_after_deadline(self, scheduler, registry, spooler, clock):
        spooler.add_local_queue("Office", "ipp://host1.local:631/printers/Office", owned_by_us=True)
        printer = entry(status=PrinterStatus.UNCONFIRMED, deadline=clock() + 10)
        registry.add(printer)

        await scheduler.run_pass()
        assert printer.status == PrinterStatus.UNCONFIRMED

        clock.advance(10)
        await scheduler.run_pass()
        assert len(registry) == 0
        assert "Office" not in spooler.queues


class TestBroadcastLease:
    @pytest.mark.asyncio
    async def test_queue_removed_when_lease_runs_out(self, resolver, scheduler, registry, spooler, clock):
        printer = await resolver.handle(browse_event("192.0.2.9", "/printers/Office2"))
        assert printer.status == PrinterStatus.PENDING_CREATE_FROM_BROADCAST

        await scheduler.run_pass()
        assert "Office2" in spooler.queues
        assert printer.status == PrinterStatus.DISAPPEARED
        assert printer.deadline == clock() + 300

        clock.advance(299)
        await scheduler.run_pass()
        assert "Office2" in spooler.queues

        clock.advance(1)
        await scheduler.run_pass()
        assert "Office2" not in spooler.queues
        assert len(registry) == 0


class TestTimer:
    @pytest.mark.asyncio
    async def test_timer_armed_for_earliest_deadline(self, scheduler, registry, clock, wakeups):
        registry.add(entry("A", deadline=clock() + 30))
        registry.add(entry("B", deadline=clock() + 0.01))

        scheduler.recheck()
        assert scheduler.next_run == clock() + 0.01

        await asyncio.sleep(0.05)
        assert wakeups == [True]

    @pytest.mark.asyncio
    async def test_no_timer_without_deadlines(self, scheduler, registry, wakeups):
        registry.add(entry(status=PrinterStatus.CONFIRMED, deadline=NEVER))
        scheduler.recheck()
        assert scheduler.next_run == NEVER

        await asyncio.sleep(0.01)
        assert wakeups == []


class TestShutdown:
    @pytest.mark.asyncio
    async def test_created_queues_removed(self, scheduler, registry, spooler):
        registry.add(entry("A"))
        registry.add(entry("B"))
        await scheduler.run_pass()
        assert set(spooler.queues) == {"A", "B"}

        await scheduler.shutdown()

        assert spooler.queues == {}
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_queue_with_jobs_survives_shutdown(self, scheduler, registry, spooler):
        registry.add(entry("A"))
        await scheduler.run_pass()
        spooler.jobs["A"] = 1

        await scheduler.shutdown()

        assert "A" in spooler.queues
        assert len(registry) == 1


class TestAutoShutdown:
    @pytest.mark.asyncio
    async def test_expires_when_registry_empty(self, registry):
        expired = []
        autoshutdown = AutoShutdown(registry, timeout=0.01, on_expire=lambda: expired.append(True), enabled=True)

        autoshutdown.update()
        assert autoshutdown.pending

        await asyncio.sleep(0.05)
        assert expired == [True]
        assert not autoshutdown.pending

    @pytest.mark.asyncio
    async def test_disabled_never_arms(self, registry):
        autoshutdown = AutoShutdown(registry, timeout=0.01, on_expire=lambda: None)
        autoshutdown.update()
        assert not autoshutdown.pending

    @pytest.mark.asyncio
    async def test_new_entry_cancels_timer(self, registry, scheduler):
        expired = []
        autoshutdown = AutoShutdown(registry, timeout=0.05, on_expire=lambda: expired.append(True), enabled=True)
        scheduler.autoshutdown = autoshutdown
        autoshutdown.update()

        registry.add(entry(status=PrinterStatus.CONFIRMED, deadline=NEVER))
        scheduler.recheck()
        assert not autoshutdown.pending

        await asyncio.sleep(0.1)
        assert expired == []

    @pytest.mark.asyncio
    async def test_last_removal_arms_timer(self, registry, scheduler, spooler):
        autoshutdown = AutoShutdown(registry, timeout=30, on_expire=lambda: None, enabled=True)
        scheduler.autoshutdown = autoshutdown
        registry.add(entry(status=PrinterStatus.DISAPPEARED, is_duplicate=True))

        await scheduler.run_pass()

        assert len(registry) == 0
        assert autoshutdown.pending
        autoshutdown.cancel()

    @pytest.mark.asyncio
    async def test_runtime_toggle(self, registry):
        autoshutdown = AutoShutdown(registry, timeout=30, on_expire=lambda: None)

        autoshutdown.set_enabled(True)
        assert autoshutdown.pending

        autoshutdown.set_enabled(False)
        assert not autoshutdown.pending
