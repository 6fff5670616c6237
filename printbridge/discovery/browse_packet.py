"""
Legacy CUPS browse packet codec.

Packet layout (one line, at most 2048 bytes):

    <type hex> <state hex> <uri> "<location>" "<info>" "<make-and-model>" lease-duration=N [name=value ...]

Only type, state and uri are mandatory when receiving. Quotes are removed
from the text fields before sending; option values escape spaces, quotes
and backslashes with a backslash.
"""

import re
from dataclasses import dataclass, field
from typing import Optional

from printbridge.spooler.base import PRINTER_DELETE

MAX_PACKET_SIZE = 2048

_QUOTED = re.compile(r'"([^"]*)"?')
_ESCAPE = re.compile(r"""([ "'\\])""")
_UNESCAPE = re.compile(r"\\(.)")


class BrowsePacketError(ValueError):
    """Malformed inbound or oversize outbound packet."""
    pass


@dataclass
class BrowsePacket:
    type: int
    state: int
    uri: str
    location: str = ""
    info: str = ""
    make_model: str = ""
    lease_duration: Optional[int] = None
    options: dict[str, str] = field(default_factory=dict)

    @property
    def is_delete(self) -> bool:
        return bool(self.type & PRINTER_DELETE)


def escape_option_value(value: str) -> str:
    return _ESCAPE.sub(r"\\\1", value)


def unescape_option_value(value: str) -> str:
    return _UNESCAPE.sub(r"\1", value)


def _split_options(text: str) -> list[str]:
    """Split on whitespace not preceded by a backslash."""
    tokens = []
    current = []
    escaped = False
    for char in text:
        if escaped:
            current.append(char)
            escaped = False
        elif char == "\\":
            current.append(char)
            escaped = True
        elif char.isspace():
            if current:
                tokens.append("".join(current))
                current = []
        else:
            current.append(char)
    if current:
        tokens.append("".join(current))
    return tokens


def parse_browse_packet(data: bytes) -> BrowsePacket:
    """
    Decode one inbound packet.

    Raises:
        BrowsePacketError: if type, state or uri are missing or unparsable
    """
    text = data[:MAX_PACKET_SIZE - 1].decode("utf-8", errors="replace")
    head = text.split(None, 3)
    if len(head) < 3:
        raise BrowsePacketError("incorrect browse packet format")

    try:
        printer_type = int(head[0], 16)
        state = int(head[1], 16)
    except ValueError as e:
        raise BrowsePacketError(f"incorrect browse packet format: {e}") from e

    packet = BrowsePacket(type=printer_type, state=state, uri=head[2])
    rest = head[3] if len(head) > 3 else ""

    # Up to three quoted text fields, then options
    quoted = []
    position = 0
    while len(quoted) < 3:
        stripped = rest[position:].lstrip()
        if not stripped.startswith('"'):
            break
        match = _QUOTED.match(rest, len(rest) - len(stripped))
        quoted.append(match.group(1))
        position = match.end()

    fields = quoted + [""] * (3 - len(quoted))
    packet.location, packet.info, packet.make_model = fields

    for token in _split_options(rest[position:]):
        name, sep, value = token.partition("=")
        if not sep:
            continue
        value = unescape_option_value(value)
        if name == "lease-duration":
            if value.isdigit():
                packet.lease_duration = int(value)
            continue
        packet.options[name] = value

    return packet


def _strip_quotes(value: str) -> str:
    return value.replace('"', "")


def format_browse_packet(packet: BrowsePacket, lease_duration: int) -> bytes:
    """
    Encode one outbound packet.

    Raises:
        BrowsePacketError: if the encoded packet exceeds the size limit
    """
    options = " ".join(
        f"{name}={escape_option_value(value)}" for name, value in packet.options.items()
    )
    line = (
        f"{packet.type:x} {packet.state:x} {packet.uri} "
        f"\"{_strip_quotes(packet.location)}\" "
        f"\"{_strip_quotes(packet.info)}\" "
        f"\"{_strip_quotes(packet.make_model)}\" "
        f"lease-duration={lease_duration}"
        f"{' ' if options else ''}{options}\n"
    )
    encoded = line.encode("utf-8")
    if len(encoded) >= MAX_PACKET_SIZE:
        raise BrowsePacketError(f"oversize packet for {packet.uri} not sent")
    return encoded
