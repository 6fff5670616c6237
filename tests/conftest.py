"""Shared fixtures: in-memory spooler, controllable clock, wired engine."""

import pytest

from printbridge.config import Timeouts
from printbridge.mirror import LocalSpoolerMirror
from printbridge.provisioner import QueueProvisioner
from printbridge.registry import DiscoveryEvent, DiscoverySource, EventKind, PrinterRegistry
from printbridge.resolver import Resolver
from printbridge.scheduler import ReconciliationScheduler
from printbridge.spooler.mock import MockSpooler


class FakeClock:
    """Clock the tests move forward by hand."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def dnssd_event(
    name: str,
    host: str,
    resource: str,
    txt: dict = None,
    service_type: str = "_ipp._tcp",
    port: int = 631,
) -> DiscoveryEvent:
    return DiscoveryEvent(
        kind=EventKind.ANNOUNCE,
        source=DiscoverySource.DNSSD,
        host=host,
        port=port,
        resource=resource,
        service_name=name,
        service_type=service_type,
        service_domain="local",
        txt=txt,
    )


def browse_event(host: str, resource: str, info: str = "", source=DiscoverySource.BROWSE) -> DiscoveryEvent:
    return DiscoveryEvent(
        kind=EventKind.ANNOUNCE,
        source=source,
        host=host,
        port=631,
        resource=resource,
        service_name=info,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def spooler():
    return MockSpooler()


@pytest.fixture
def registry():
    return PrinterRegistry()


@pytest.fixture
def mirror(spooler):
    return LocalSpoolerMirror(spooler)


@pytest.fixture
def timeouts():
    return Timeouts()


@pytest.fixture
def resolver(registry, mirror, clock, timeouts):
    return Resolver(
        registry,
        mirror,
        timeouts=timeouts,
        create_ipp_printer_queues=True,
        clock=clock,
    )


@pytest.fixture
def provisioner(spooler, tmp_path):
    return QueueProvisioner(spooler, temp_dir=str(tmp_path))


@pytest.fixture
def wakeups():
    """Timer firings recorded instead of running passes behind the test's back."""
    return []


@pytest.fixture
def scheduler(registry, spooler, provisioner, clock, timeouts, wakeups):
    return ReconciliationScheduler(
        registry,
        spooler,
        provisioner,
        timeouts=timeouts,
        clock=clock,
        on_wakeup=lambda: wakeups.append(True),
    )
