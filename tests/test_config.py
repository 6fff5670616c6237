"""Tests for configuration parsing."""

import pytest

from printbridge.config import (
    AUTOSHUTDOWN_AVAHI,
    AUTOSHUTDOWN_OFF,
    AUTOSHUTDOWN_ON,
    BrowsedConfig,
    ConfigError,
    load_config,
    parse_autoshutdown,
    parse_protocols,
)


class TestParseProtocols:
    def test_string(self):
        assert parse_protocols("cups dnssd") == {"cups", "dnssd"}

    def test_list(self):
        assert parse_protocols(["CUPS"]) == {"cups"}

    def test_none(self):
        assert parse_protocols("none") == set()
        assert parse_protocols(None) == set()

    def test_unknown(self):
        with pytest.raises(ConfigError):
            parse_protocols("ldap")


class TestParseAutoshutdown:
    def test_yaml_booleans(self):
        assert parse_autoshutdown(True) == AUTOSHUTDOWN_ON
        assert parse_autoshutdown(False) == AUTOSHUTDOWN_OFF

    def test_strings(self):
        assert parse_autoshutdown("Yes") == AUTOSHUTDOWN_ON
        assert parse_autoshutdown("0") == AUTOSHUTDOWN_OFF
        assert parse_autoshutdown("avahi") == AUTOSHUTDOWN_AVAHI

    def test_unknown(self):
        with pytest.raises(ConfigError):
            parse_autoshutdown("sometimes")


class TestBrowsedConfig:
    def test_defaults(self):
        config = BrowsedConfig.from_dict({})
        assert config.browse_remote_dnssd
        assert not config.browse_remote_cups
        assert config.browse_local_cups
        assert config.autoshutdown == AUTOSHUTDOWN_OFF
        assert config.timeouts.remove == -1
        assert not config.status_api.enabled

    def test_dnssd_not_advertised(self):
        config = BrowsedConfig.from_dict({"browse": {"local_protocols": "cups dnssd"}})
        assert config.browse.local_protocols == {"cups"}

    def test_bad_values_keep_defaults(self):
        config = BrowsedConfig.from_dict({
            "browse": {"interval": "soon", "remote_protocols": "ldap"},
            "autoshutdown": "sometimes",
            "timeouts": {"retry": None},
        })
        assert config.browse.interval == 60
        assert config.browse.remote_protocols == {"dnssd"}
        assert config.autoshutdown == AUTOSHUTDOWN_OFF
        assert config.timeouts.retry == 10

    def test_poll_contexts(self):
        config = BrowsedConfig.from_dict({"browse": {"poll": ["print1", "print2:8631/version=1.1"]}})
        contexts = config.poll_contexts()
        assert [c.label for c in contexts] == ["print1:631", "print2:8631"]
        assert (contexts[1].major, contexts[1].minor) == (1, 1)

    def test_access_filter(self):
        config = BrowsedConfig.from_dict({"browse": {"allow": ["192.0.2.0/24"]}})
        assert config.access_filter().allows("192.0.2.9")
        assert not config.access_filter().allows("198.51.100.9")

    def test_unusable_domain_socket(self, tmp_path):
        config = BrowsedConfig.from_dict({"domain_socket": str(tmp_path / "missing.sock")})
        assert config.spooler_server() == "localhost"


class TestLoadConfig:
    def test_explicit_path(self, tmp_path, monkeypatch):
        monkeypatch.delenv("CONFIG_FILE", raising=False)
        path = tmp_path / "browsed.yaml"
        path.write_text("autoshutdown: avahi\nbrowse:\n  interval: 30\n")

        config = load_config(str(path))
        assert config["autoshutdown"] == "avahi"
        assert config["browse"]["interval"] == 30

    def test_empty_file(self, tmp_path, monkeypatch):
        monkeypatch.delenv("CONFIG_FILE", raising=False)
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_config(str(path)) == {}
