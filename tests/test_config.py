"""
Configuration Tests
Tests for link configuration parsing and validation
"""

import json

import pytest

from vehiclelink.utils.config import (
    DEFAULT_BAUDRATE,
    DEFAULT_TCP_PORT,
    DEFAULT_UDP_PORT,
    AggregatorConfig,
    ConfigError,
    LinkConfig,
    ReconnectConfig,
    SerialConfig,
    TcpConfig,
    TcpRole,
    TransportKind,
    UdpConfig,
    load_config,
    transport_config_from_dict,
)


class TestDefaults:
    """Test protocol-conventional defaults."""

    def test_link_defaults(self):
        config = LinkConfig()

        assert isinstance(config.transport, UdpConfig)
        assert config.transport.port == DEFAULT_UDP_PORT == 14550
        assert config.heartbeat_timeout == 3.0
        assert config.reconnect == ReconnectConfig(1.0, 2.0, 30.0)
        assert config.aggregator.rate_hz == 10.0
        assert config.validate() == []

    def test_transport_defaults(self):
        assert SerialConfig().baudrate == DEFAULT_BAUDRATE == 57600
        assert TcpConfig().port == DEFAULT_TCP_PORT == 5760
        assert TcpConfig().role == TcpRole.CLIENT


class TestFromDict:
    """Test building configs from dictionaries."""

    def test_full_link(self):
        config = LinkConfig.from_dict({
            "transport": {"kind": "tcp", "host": "10.0.0.2", "port": 5762, "role": "server"},
            "heartbeat_timeout": 5.0,
            "reconnect": {"initial_delay": 0.5, "max_delay": 8.0},
            "aggregator": {"rate_hz": 4, "group_stale_after": {"gps": 10.0}},
        })

        assert isinstance(config.transport, TcpConfig)
        assert config.transport.role == TcpRole.SERVER
        assert config.transport.port == 5762
        assert config.heartbeat_timeout == 5.0
        assert config.reconnect.initial_delay == 0.5
        assert config.reconnect.multiplier == 2.0
        assert config.aggregator.stale_threshold("gps") == 10.0
        assert config.aggregator.stale_threshold("battery") == 3.0

    def test_serial(self):
        config = transport_config_from_dict({"kind": "serial", "device": "/dev/ttyACM0"})
        assert config.kind == TransportKind.SERIAL
        assert config.device == "/dev/ttyACM0"

    def test_transport_to_dict_round_trip(self):
        original = UdpConfig(host="127.0.0.1", port=14551, remote_host="127.0.0.1", remote_port=14550)
        assert transport_config_from_dict(original.to_dict()) == original

    def test_unknown_kind(self):
        with pytest.raises(ConfigError):
            transport_config_from_dict({"kind": "carrier-pigeon"})

    def test_bad_tcp_role(self):
        with pytest.raises(ConfigError):
            transport_config_from_dict({"kind": "tcp", "role": "peer"})


class TestValidation:
    """Test validation errors."""

    @pytest.mark.parametrize("data", [
        {"transport": {"kind": "udp", "port": 70000}},
        {"transport": {"kind": "serial"}},
        {"heartbeat_timeout": 0},
        {"queue_size": 0},
        {"system_id": 300},
        {"protocol_version": 3},
        {"reconnect": {"multiplier": 0.5}},
        {"reconnect": {"initial_delay": 10.0, "max_delay": 1.0}},
        {"aggregator": {"group_stale_after": {"wind": 1.0}}},
        {"aggregator": {"rate_hz": -1}},
    ])
    def test_invalid(self, data):
        with pytest.raises(ConfigError) as exc_info:
            LinkConfig.from_dict(data)
        assert exc_info.value.errors

    def test_collects_all_errors(self):
        with pytest.raises(ConfigError) as exc_info:
            LinkConfig.from_dict({"queue_size": 0, "system_id": 300})
        assert len(exc_info.value.errors) == 2

    def test_not_a_dict(self):
        with pytest.raises(ConfigError):
            LinkConfig.from_dict(["udp"])

    def test_aggregator_interval(self):
        assert AggregatorConfig(rate_hz=4).interval == 0.25


class TestLoadConfig:
    """Test loading configs from JSON files."""

    def test_load(self, tmp_path):
        path = tmp_path / "link.json"
        path.write_text(json.dumps({"transport": {"kind": "udp", "port": 14551}}))

        config = load_config(path)

        assert config.transport.port == 14551

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError):
            load_config(tmp_path / "missing.json")

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json")
        with pytest.raises(ConfigError):
            load_config(path)
