"""Tests for config file loading and validation."""

from __future__ import annotations

import json
from datetime import timedelta

import pytest

from querycache.config import EXAMPLE_CONFIG, load_config, load_config_data, parse_duration
from querycache.core.errors import ConfigError


def _config(**overrides) -> dict:
    data = {
        "listen": "127.0.0.1:8000",
        "connection": {"dsn": "postgresql://u:p@localhost:5432/db"},
        "endpoints": [{"path": "/a", "sql": "SELECT 1", "schedule": "* * * * *"}],
    }
    data.update(overrides)
    return data


def _endpoint(**overrides) -> dict:
    ep = {"path": "/a", "sql": "SELECT 1", "schedule": "* * * * *"}
    ep.update(overrides)
    return ep


class TestParseDuration:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("300ms", timedelta(milliseconds=300)),
            ("1.5s", timedelta(seconds=1.5)),
            ("2m", timedelta(minutes=2)),
            ("1h30m", timedelta(hours=1, minutes=30)),
            ("0", timedelta(0)),
            ("-5s", timedelta(seconds=-5)),
        ],
    )
    def test_valid(self, raw, expected) -> None:
        assert parse_duration(raw) == expected

    @pytest.mark.parametrize("raw", ["", "5", "5x", "m", "1h 30m"])
    def test_invalid(self, raw) -> None:
        with pytest.raises(ValueError):
            parse_duration(raw)


class TestLoad:
    def test_example_config_is_valid(self, tmp_path) -> None:
        path = tmp_path / "cache.json"
        path.write_text(EXAMPLE_CONFIG)
        cfg = load_config(path)
        assert [e.path for e in cfg.endpoints] == ["/reports/daily-signups", "/reports/orders"]
        assert cfg.endpoints[1].filebacked and cfg.endpoints[1].as_arrays
        assert cfg.endpoints[0].timeout_seconds == 30
        assert cfg.connection.pool_size == 5
        assert cfg.connection.idle_seconds == 300
        assert (cfg.host, cfg.port) == ("127.0.0.1", 8000)

    def test_defaults(self) -> None:
        cfg = load_config_data(_config(listen=":9000"))
        ep = cfg.endpoints[0]
        assert ep.rowformat == "" and not ep.as_arrays
        assert not ep.filebacked
        assert ep.timeout_seconds is None
        assert cfg.connection.pool_size == 5
        assert cfg.connection.idle_seconds is None
        assert (cfg.host, cfg.port) == ("0.0.0.0", 9000)

    def test_missing_file(self, tmp_path) -> None:
        with pytest.raises(ConfigError, match="error reading config file"):
            load_config(tmp_path / "missing.json")

    def test_bad_json(self, tmp_path) -> None:
        path = tmp_path / "cache.json"
        path.write_text("{not json")
        with pytest.raises(ConfigError, match="error parsing"):
            load_config(path)

    def test_top_level_not_object(self, tmp_path) -> None:
        path = tmp_path / "cache.json"
        path.write_text(json.dumps([1, 2]))
        with pytest.raises(ConfigError):
            load_config(path)


class TestValidation:
    @pytest.mark.parametrize(
        "endpoint, message",
        [
            (_endpoint(path="a"), "invalid path"),
            (_endpoint(path="/a//b"), "invalid path"),
            (_endpoint(path="/a b"), "invalid path"),
            (_endpoint(sql="   "), "invalid sql"),
            (_endpoint(sqltimeout="soon"), "invalid sqltimeout"),
            (_endpoint(schedule="every minute"), "invalid schedule"),
            (_endpoint(schedule="61 * * * *"), "invalid schedule"),
            (_endpoint(rowformat="csv"), "invalid rowformat"),
            (_endpoint(extra=True), "extra"),
        ],
    )
    def test_bad_endpoint(self, endpoint, message) -> None:
        with pytest.raises(ConfigError, match=message):
            load_config_data(_config(endpoints=[endpoint]))

    def test_root_and_template_paths(self) -> None:
        cfg = load_config_data(_config(endpoints=[_endpoint(path="/"), _endpoint(path="/users/{id}/orders")]))
        assert [e.path for e in cfg.endpoints] == ["/", "/users/{id}/orders"]

    def test_no_endpoints(self) -> None:
        with pytest.raises(ConfigError, match="no endpoints defined"):
            load_config_data(_config(endpoints=[]))

    def test_duplicate_paths(self) -> None:
        with pytest.raises(ConfigError, match="duplicate path"):
            load_config_data(_config(endpoints=[_endpoint(), _endpoint()]))

    @pytest.mark.parametrize("listen", ["localhost", "host:port", "1.2.3.4:70000", ""])
    def test_bad_listen(self, listen) -> None:
        with pytest.raises(ConfigError, match="listen"):
            load_config_data(_config(listen=listen))

    def test_negative_maxconns(self) -> None:
        conn = {"dsn": "postgresql://localhost/db", "maxconns": -1}
        with pytest.raises(ConfigError, match="cannot be negative"):
            load_config_data(_config(connection=conn))

    def test_bad_dsn(self) -> None:
        with pytest.raises(ConfigError, match="dsn"):
            load_config_data(_config(connection={"dsn": "not a url"}))

    def test_bad_idletimeout(self) -> None:
        conn = {"dsn": "postgresql://localhost/db", "idletimeout": "later"}
        with pytest.raises(ConfigError, match="idletimeout"):
            load_config_data(_config(connection=conn))
