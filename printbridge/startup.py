"""
Startup checks and validation.

Run before starting the daemon to catch configuration issues early.
"""

import asyncio
import logging
import re
import sys

from printbridge.access import RuleType, parse_allow_value
from printbridge.config import AUTOSHUTDOWN_ON, BrowsedConfig
from printbridge.discovery.subscription import IPP_VERSIONS
from printbridge.spooler.base import SpoolerBase
from printbridge.spooler.errors import SpoolerError

logger = logging.getLogger(__name__)

_POLL_ENTRY = re.compile(r"^[^\s/:]+(:\d+)?(/\S+)?$")

SPOOLER_RETRIES = 10


class StartupError(Exception):
    """Raised when startup checks fail."""
    pass


def _is_int(value) -> bool:
    try:
        int(value)
    except (TypeError, ValueError):
        return False
    return True


def validate_config(config: dict) -> list[str]:
    """
    Validate configuration and return list of warnings/errors.

    Returns:
        List of warning/error messages (empty if all good)
    """
    issues = []

    browse = config.get("browse") or {}
    for entry in browse.get("poll") or []:
        entry = str(entry)
        match = _POLL_ENTRY.match(entry)
        if not match:
            issues.append(f"Invalid BrowsePoll entry: '{entry}'.")
        elif match.group(2) and match.group(2)[1:].lower() not in IPP_VERSIONS:
            issues.append(f"Unknown option in BrowsePoll entry '{entry}', it will be ignored.")

    for value in browse.get("allow") or []:
        if parse_allow_value(str(value)).type == RuleType.INVALID:
            issues.append(f"Invalid browse.allow rule: '{value}'. It will never match.")

    for key in ("interval", "timeout"):
        if key in browse and not _is_int(browse[key]):
            issues.append(f"Invalid browse.{key}: {browse[key]!r}. Default used.")

    timeouts = config.get("timeouts") or {}
    for key, value in timeouts.items():
        if not _is_int(value):
            issues.append(f"Invalid timeout '{key}': {value!r}. Default used.")

    autoshutdown_timeout = config.get("autoshutdown_timeout", 30)
    if not _is_int(autoshutdown_timeout):
        issues.append(f"Invalid autoshutdown_timeout: {autoshutdown_timeout!r}. Default used.")
    elif int(autoshutdown_timeout) < 0:
        issues.append(f"Invalid autoshutdown_timeout: {autoshutdown_timeout}. Must not be negative.")

    return issues


def check_dependencies() -> dict[str, bool]:
    """
    Check which optional dependencies are available.

    Returns:
        Dict of dependency name -> is_available
    """
    deps = {}

    # pycups for the spooler connection
    try:
        import cups
        deps["pycups"] = True
    except ImportError:
        deps["pycups"] = False

    # zeroconf for DNS-SD browsing
    try:
        import zeroconf
        deps["zeroconf"] = True
    except ImportError:
        deps["zeroconf"] = False

    # uvicorn for the status API
    try:
        import uvicorn
        deps["uvicorn"] = True
    except ImportError:
        deps["uvicorn"] = False

    return deps


async def wait_for_spooler(spooler: SpoolerBase, retries: int = SPOOLER_RETRIES, delay: float = 1.0) -> None:
    """
    Wait until the local spooler answers.

    Raises:
        StartupError: if it did not answer within ``retries`` attempts
    """
    last_error = None
    for attempt in range(1, retries + 1):
        try:
            await spooler.list_queues()
            if attempt > 1:
                logger.info(f"Connected to {spooler.describe()} after {attempt} attempts")
            return
        except SpoolerError as e:
            last_error = e
            logger.debug(f"Spooler not ready (attempt {attempt}/{retries}): {e}")
            if attempt < retries:
                await asyncio.sleep(delay)

    raise StartupError(f"Cannot connect to {spooler.describe()}: {last_error}")


async def run_startup_checks(config: dict, spooler: SpoolerBase, retries: int = SPOOLER_RETRIES) -> None:
    """
    Run all startup checks. Exits with error if critical issues found.

    Args:
        config: Loaded configuration dict
        spooler: Local spooler connection
        retries: Connection attempts, one second apart
    """
    logger.info("Running startup checks...")

    errors = []
    warnings = []

    for issue in validate_config(config):
        if "Must not be negative" in issue:
            errors.append(issue)
        else:
            warnings.append(issue)

    deps = check_dependencies()
    missing_deps = [name for name, available in deps.items() if not available]
    if missing_deps:
        warnings.append(f"Optional dependencies not installed: {', '.join(missing_deps)}")

    if not errors:
        try:
            await wait_for_spooler(spooler, retries)
        except StartupError as e:
            errors.append(str(e))

    for warning in warnings:
        logger.warning(f"  ⚠ {warning}")

    if errors:
        logger.error("Startup checks failed:")
        for error in errors:
            logger.error(f"  ✗ {error}")
        logger.error("")
        logger.error("Fix these issues and try again.")
        sys.exit(1)

    if warnings:
        logger.info(f"Startup checks passed with {len(warnings)} warning(s)")
    else:
        logger.info("Startup checks passed ✓")


def print_startup_banner(config: BrowsedConfig, spooler: SpoolerBase) -> None:
    """Print a startup banner with the active settings."""
    browse = config.browse
    remote = ", ".join(sorted(browse.remote_protocols)) or "none"
    local = ", ".join(sorted(browse.local_protocols)) or "none"
    autoshutdown = config.autoshutdown
    if autoshutdown == AUTOSHUTDOWN_ON:
        autoshutdown = f"on ({config.autoshutdown_timeout}s)"

    print("")
    print("=" * 50)
    print("  printbridge")
    print("=" * 50)
    print("")
    print(f"  Spooler:           {spooler.describe()}")
    print(f"  Browse remote:     {remote}")
    print(f"  Advertise local:   {local}")
    print(f"  Browse interval:   {browse.interval}s (lease {browse.timeout}s)")
    print(f"  Driverless queues: {'yes' if config.create_ipp_printer_queues else 'no'}")
    print(f"  Auto shutdown:     {autoshutdown}")
    if config.browse_remote_cups:
        rules = config.access_filter().describe()
        print(f"  Browse allow:      {', '.join(rules) if rules else 'all'}")
    print("")
    if browse.poll:
        print("  BrowsePoll peers:")
        for context in config.poll_contexts():
            print(f"    • {context.label}")
        print("")
    if config.status_api.enabled:
        api = config.status_api
        print(f"  Status API:        http://{api.host}:{api.port}/v1/health")
        print("")
    print("=" * 50)
    print("")
