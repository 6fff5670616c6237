"""
Queue-name and device-URI derivation.

Names and PDL lists taken from network announcements end up on filter
command lines inside generated interface scripts, so everything outside a
small safe alphabet is replaced before use.
"""

import string
from typing import Optional
from urllib.parse import quote, urlsplit

# mode 0: make/model strings and queue names
NAME_CHARS = frozenset(string.ascii_letters + string.digits + "_")
# mode 1: MIME type lists (PDLs) and host names
MIME_CHARS = NAME_CHARS | frozenset("/.,")

LOCAL_SUFFIXES = (".local.", ".local")


def sanitize(value: Optional[str], mode: int = 0) -> Optional[str]:
    """
    Replace each run of disallowed characters by a single dash.

    Leading and trailing dashes are cut off. A dash in the input counts
    as disallowed, so existing dashes collapse with their neighbours.

    Args:
        value: String from an announcement; None passes through
        mode: 0 keeps letters, digits and '_'; 1 additionally keeps '/', '.' and ','
    """
    if value is None:
        return None

    allowed = MIME_CHARS if mode == 1 else NAME_CHARS
    out = []
    have_dash = False
    for char in value:
        if char in allowed:
            out.append(char)
            have_dash = False
        elif not have_dash:
            out.append("-")
            have_dash = True

    return "".join(out).strip("-")


def normalize_host(host: str) -> str:
    """Sanitized host name without a trailing .local / .local. domain."""
    remote_host = sanitize(host, 1)
    lowered = remote_host.lower()
    for suffix in LOCAL_SUFFIXES:
        if len(remote_host) > len(suffix) and lowered.endswith(suffix):
            return remote_host[:-len(suffix)]
    return remote_host


def device_uri(service_type: str, host: str, port: int, resource: str) -> str:
    """Device URI a local queue uses to reach the remote printer."""
    scheme = "ipps" if "_ipps" in service_type.lower() else "ipp"
    if ":" in host and not host.startswith("["):
        host = f"[{host}]"
    return f"{scheme}://{host}:{port}/{quote(resource.lstrip('/'), safe='/%?=&@:,+')}"


def uri_without_scheme(uri: str) -> str:
    """Everything after the scheme, for comparing ipp: and ipps: URIs."""
    return uri.partition(":")[2].lower()


def split_printer_uri(uri: str) -> tuple[str, int, str]:
    """
    Host, port and resource path of a printer URI.

    The resource keeps its leading slash and any query string.

    Raises:
        ValueError: if the URI cannot be parsed or names no host
    """
    parts = urlsplit(uri)
    if not parts.hostname:
        raise ValueError(f"no host in URI {uri!r}")
    resource = parts.path or "/"
    if parts.query:
        resource = f"{resource}?{parts.query}"
    try:
        port = parts.port or 631
    except ValueError:
        port = 631
    return parts.hostname, port, resource
