"""Tests for queue-name and URI derivation."""

import pytest

from printbridge.naming import device_uri, normalize_host, sanitize, split_printer_uri, uri_without_scheme


class TestSanitize:
    def test_collapses_runs_of_disallowed_characters(self):
        assert sanitize("HP LaserJet!! 400", 0) == "HP-LaserJet-400"

    def test_strips_leading_and_trailing_dashes(self):
        assert sanitize("-weird--name-", 0) == "weird-name"

    def test_mime_mode_keeps_separators(self):
        assert sanitize("image/pwg-raster,application/pdf", 1) == "image/pwg-raster,application/pdf"

    def test_name_mode_replaces_separators(self):
        assert sanitize("image/pwg-raster,application/pdf", 0) == "image-pwg-raster-application-pdf"

    def test_underscore_is_kept(self):
        assert sanitize("Office_2nd floor", 0) == "Office_2nd-floor"

    def test_none_passes_through(self):
        assert sanitize(None) is None

    def test_only_disallowed_characters_gives_empty_name(self):
        assert sanitize("!!!", 0) == ""


class TestHosts:
    def test_local_domain_removed(self):
        assert normalize_host("printserver.local") == "printserver"
        assert normalize_host("printserver.local.") == "printserver"

    def test_other_domains_kept(self):
        assert normalize_host("printserver.example.com") == "printserver.example.com"

    def test_address_kept(self):
        assert normalize_host("192.0.2.9") == "192.0.2.9"


class TestDeviceURI:
    def test_ipp(self):
        assert device_uri("_ipp._tcp", "host1.local", 631, "printers/Office") == "ipp://host1.local:631/printers/Office"

    def test_ipps_service(self):
        assert device_uri("_ipps._tcp", "host1.local", 443, "/ipp/print") == "ipps://host1.local:443/ipp/print"

    def test_ipv6_host_bracketed(self):
        assert device_uri("", "fe80::1", 631, "ipp/print") == "ipp://[fe80::1]:631/ipp/print"

    def test_scheme_ignored_when_comparing(self):
        assert uri_without_scheme("ipp://Host:631/x") == uri_without_scheme("ipps://host:631/x")


class TestSplitPrinterURI:
    def test_full_uri(self):
        assert split_printer_uri("ipp://192.0.2.9:8631/printers/Office2") == ("192.0.2.9", 8631, "/printers/Office2")

    def test_default_port(self):
        assert split_printer_uri("ipp://server/classes/All") == ("server", 631, "/classes/All")

    def test_query_kept(self):
        assert split_printer_uri("ipp://server:631/printers/A?waitjob=false") == (
            "server", 631, "/printers/A?waitjob=false"
        )

    def test_missing_host_rejected(self):
        with pytest.raises(ValueError):
            split_printer_uri("ipp:///printers/Office")

    def test_broken_ipv6_host_rejected(self):
        with pytest.raises(ValueError):
            split_printer_uri("ipp://[::1/printers/x")
