"""
Queue provisioning.

Builds the local queue definition for a registry entry and hands it to
the spooler:

- queues shared by a remote spooler become raw queues, the remote
  server's driver does the rendering
- native IPP printers get a PPD generated from their capabilities when a
  generator is configured, otherwise an interface script that runs the
  generic IPP printer filter with the advertised PDL and model
"""

import logging
import os
import tempfile
from typing import Callable, Optional

from printbridge.registry import PrinterKind, RemotePrinter
from printbridge.spooler.base import QueueDefinition, SpoolerBase
from printbridge.spooler.errors import SpoolerError

logger = logging.getLogger(__name__)

DEFAULT_SERVERBIN = "/usr/lib/cups"

# Takes the printer's IPP attributes and the queue name, returns a PPD path
PPDGenerator = Callable[[dict, str], Optional[str]]

INTERFACE_SCRIPT = """#!/bin/sh
# System V interface script for printer {name} generated by printbridge

if [ $# -lt 5 -o $# -gt 6 ]; then
  echo "ERROR: $0 job-id user title copies options [file]" >&2
  exit 1
fi

# Read from given file
if [ -n "$6" ]; then
  exec "$0" "$1" "$2" "$3" "$4" "$5" < "$6"
fi

extra_options="output-format={pdl} make-and-model={make_model}"

{serverbin}/filter/pdftoippprinter "$1" "$2" "$3" "$4" "$5 $extra_options"
"""


class ProvisionError(Exception):
    """Raised when a queue definition cannot be prepared locally."""
    pass


class QueueProvisioner:
    """
    Creates or updates local queues for registry entries.

    Args:
        spooler: The local spooler
        ppd_generator: Optional PPD generator for native IPP printers
        temp_dir: Directory for generated files (default: system temp dir)
    """

    def __init__(
        self,
        spooler: SpoolerBase,
        ppd_generator: Optional[PPDGenerator] = None,
        temp_dir: Optional[str] = None,
    ):
        self.spooler = spooler
        self.ppd_generator = ppd_generator
        self.temp_dir = temp_dir

    async def provision(self, printer: RemotePrinter) -> None:
        """
        Create or modify the local queue of ``printer``.

        Generated files are removed once the spooler has consumed them.

        Raises:
            SpoolerError: if the spooler rejected or never saw the request
            ProvisionError: if the driver files could not be written
        """
        definition = await self.build_definition(printer)
        if definition.ppd_path:
            logger.debug(f"Non-raw queue {printer.name} with PPD file: {definition.ppd_path}")
        elif definition.script_path:
            logger.debug(f"Non-raw queue {printer.name} with interface script: {definition.script_path}")
        elif definition.driver_model:
            logger.debug(f"Non-raw queue {printer.name} with system PPD: {definition.driver_model}")
        else:
            logger.debug(f"Raw queue {printer.name}")

        try:
            await self.spooler.create_or_modify_queue(definition)
        finally:
            self._remove_generated(definition)

    async def build_definition(self, printer: RemotePrinter) -> QueueDefinition:
        """Queue definition for ``printer``, generating driver files as needed."""
        definition = QueueDefinition(
            name=printer.name,
            device_uri=printer.uri,
            info=printer.service_name,
            location=printer.host,
            # A queue pointing at a remote printer is never shared again
            shared=False,
            driver_model=printer.driver_model,
        )

        if printer.kind != PrinterKind.NETWORK_PRINTER or printer.driver_model:
            return definition

        printer.ppd_path = await self._generate_ppd(printer)
        printer.script_path = None
        if printer.ppd_path is None:
            printer.script_path = self.write_interface_script(printer)

        definition.ppd_path = printer.ppd_path
        definition.script_path = printer.script_path
        return definition

    async def _generate_ppd(self, printer: RemotePrinter) -> Optional[str]:
        if self.ppd_generator is None:
            return None

        try:
            attributes = await self.spooler.fetch_printer_capabilities(printer.uri)
        except SpoolerError as e:
            logger.warning(f"Cannot query remote printer {printer.uri}: {e}")
            return None

        try:
            path = self.ppd_generator(attributes, printer.name)
        except Exception as e:
            logger.warning(f"Unable to create PPD file for {printer.name}: {e}")
            return None

        if path:
            logger.debug(f"Created temporary PPD for {printer.name}: {path}")
        return path

    def write_interface_script(self, printer: RemotePrinter) -> str:
        """
        Write the interface script for a native IPP printer.

        Raises:
            ProvisionError: if the temporary file cannot be written
        """
        script = INTERFACE_SCRIPT.format(
            name=printer.name,
            pdl=printer.pdl or "",
            make_model=printer.make_model or "",
            serverbin=os.environ.get("CUPS_SERVERBIN", DEFAULT_SERVERBIN),
        )
        try:
            fd, path = tempfile.mkstemp(prefix="printbridge-", suffix=".sh", dir=self.temp_dir)
            with os.fdopen(fd, "w") as f:
                f.write(script)
        except OSError as e:
            logger.error(f"Unable to create interface script for {printer.name}: {e}")
            raise ProvisionError(f"interface script for {printer.name}: {e}") from e

        logger.debug(f"Created temp script file {path}")
        return path

    def _remove_generated(self, definition: QueueDefinition) -> None:
        for path in (definition.ppd_path, definition.script_path):
            if not path:
                continue
            try:
                os.unlink(path)
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning(f"Could not remove temporary file {path}: {e}")
