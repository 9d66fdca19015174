"""
Test Suite for Configuration
============================

Run with: pytest tests/ -v
"""

import pytest
import os
import sys
from pathlib import Path
from unittest.mock import patch

import yaml
from eth_utils import is_checksum_address

# Add parent to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from config import BlastConfig, ConfigManager, parse_private_keys
from utils import ConfigurationError

KEY_A = "0x" + "11" * 32
KEY_B = "0x" + "22" * 32


class TestBlastConfig:
    """Defaults, conversion and validation."""

    def test_defaults(self):
        config = BlastConfig()
        assert config.chain_id == 6342
        assert config.total_tx == 500
        assert config.gas_limit == 90000
        assert config.max_retries == 5
        assert config.congestion_backoff_ms == 1000
        assert config.inter_tx_delay_ms == 10
        assert config.dry_run is False

    def test_fee_conversion(self):
        config = BlastConfig(max_fee_gwei="0.009")
        assert config.max_fee_wei == 9_000_000
        assert config.priority_fee_wei == 9_000_000

        config = BlastConfig(max_fee_gwei="2", priority_fee_gwei="0.5")
        assert config.max_fee_wei == 2_000_000_000
        assert config.priority_fee_wei == 500_000_000

    def test_float_fee_keeps_precision(self):
        assert BlastConfig(max_fee_gwei=0.009).max_fee_wei == 9_000_000

    def test_to_dict_excludes_keys(self):
        data = BlastConfig(private_keys=(KEY_A,)).to_dict()
        assert "private_keys" not in data
        assert data["rpc_url"] == "https://carrot.megaeth.com/rpc"

    def test_repr_hides_keys(self):
        assert KEY_A not in repr(BlastConfig(private_keys=(KEY_A,)))

    def test_from_dict(self):
        config = BlastConfig.from_dict({
            "total_tx": 20,
            "private_keys": f"{KEY_A}, {KEY_B}",
            "unknown_field": "ignored",
        })
        assert config.total_tx == 20
        assert config.private_keys == (KEY_A, KEY_B)

    def test_with_overrides_skips_none(self):
        config = BlastConfig().with_overrides(total_tx=3, rpc_url=None)
        assert config.total_tx == 3
        assert config.rpc_url == BlastConfig().rpc_url

    def test_validate_checksums_target(self):
        config = BlastConfig(private_keys=(KEY_A,)).validate()
        assert is_checksum_address(config.target)
        assert config.target.lower() == BlastConfig().target
        assert config.target != BlastConfig().target

    def test_validate_requires_keys(self):
        with pytest.raises(ConfigurationError, match="PRIVATE_KEYS"):
            BlastConfig().validate()
        BlastConfig().validate(require_keys=False)

    @pytest.mark.parametrize("changes", [
        {"rpc_url": "ws://localhost:8546"},
        {"target": "0x1234"},
        {"call_data": "05632f40"},
        {"call_data": "0x05632f4"},
        {"call_data": "0xzz"},
        {"gas_limit": 0},
        {"max_retries": 0},
        {"total_tx": -1},
        {"inter_tx_delay_ms": -5},
        {"max_fee_gwei": "abc"},
        {"max_fee_gwei": "-1"},
        {"max_fee_gwei": "1", "priority_fee_gwei": "2"},
    ])
    def test_validate_rejects(self, changes):
        with pytest.raises(ConfigurationError):
            BlastConfig(private_keys=(KEY_A,), **changes).validate()

    @pytest.mark.parametrize("changes", [
        {"total_tx": "ten"},
        {"gas_limit": None},
        {"max_retries": [3]},
        {"inter_tx_delay_ms": 2.5},
        {"dry_run": True, "chain_id": True},
        {"rpc_url": 8545},
    ])
    def test_validate_rejects_non_integers(self, changes):
        with pytest.raises(ConfigurationError):
            BlastConfig(private_keys=(KEY_A,), **changes).validate()

    def test_validate_converts_numeric_strings(self):
        config = BlastConfig(private_keys=(KEY_A,), total_tx="12", gas_limit=50000.0).validate()
        assert config.total_tx == 12
        assert isinstance(config.gas_limit, int)

    def test_zero_total_is_valid(self):
        assert BlastConfig(private_keys=(KEY_A,), total_tx=0).validate().total_tx == 0


class TestParsePrivateKeys:

    def test_trims_and_drops_blanks(self):
        assert parse_private_keys(f" {KEY_A} ,, {KEY_B},") == (KEY_A, KEY_B)

    def test_empty(self):
        assert parse_private_keys("") == ()
        assert parse_private_keys(None) == ()


class TestConfigManager:
    """Layering: defaults < YAML < environment < overrides."""

    def test_defaults_without_file(self, tmp_path):
        manager = ConfigManager(tmp_path / "missing.yaml", env_file=None)
        with patch.dict(os.environ, {"PRIVATE_KEYS": KEY_A}, clear=True):
            config = manager.load()
        assert config.total_tx == 500
        assert config.private_keys == (KEY_A,)

    def test_yaml_then_env_then_overrides(self, tmp_path):
        path = tmp_path / "blaster_config.yaml"
        path.write_text(yaml.safe_dump({"total_tx": 10, "chain_id": 1, "gas_limit": 50000}))
        manager = ConfigManager(path, env_file=None)

        env = {"PRIVATE_KEYS": f"{KEY_A},{KEY_B}", "CHAIN_ID": "31337", "TOTAL_TX": "20"}
        with patch.dict(os.environ, env, clear=True):
            config = manager.load(overrides={"total_tx": 30, "rpc_url": None})

        assert config.gas_limit == 50000
        assert config.chain_id == 31337
        assert config.total_tx == 30
        assert config.private_keys == (KEY_A, KEY_B)

    def test_yaml_private_keys_ignored(self, tmp_path):
        path = tmp_path / "blaster_config.yaml"
        path.write_text(yaml.safe_dump({"private_keys": [KEY_B]}))
        manager = ConfigManager(path, env_file=None)

        with patch.dict(os.environ, {"PRIVATE_KEYS": KEY_A}, clear=True):
            config = manager.load()
        assert config.private_keys == (KEY_A,)

    def test_env_file(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text(f"PRIVATE_KEYS={KEY_A}\nTOTAL_TX=4\n")
        manager = ConfigManager(tmp_path / "missing.yaml", env_file=str(env_file))

        with patch.dict(os.environ, {}, clear=True):
            config = manager.load()
        assert config.private_keys == (KEY_A,)
        assert config.total_tx == 4

    def test_invalid_env_value(self, tmp_path):
        manager = ConfigManager(tmp_path / "missing.yaml", env_file=None)
        with patch.dict(os.environ, {"PRIVATE_KEYS": KEY_A, "CHAIN_ID": "megaeth"}, clear=True):
            with pytest.raises(ConfigurationError, match="CHAIN_ID"):
                manager.load()

    def test_unknown_yaml_keys_ignored(self, tmp_path):
        path = tmp_path / "blaster_config.yaml"
        path.write_text("slippage_percent: 2\ntotal_tx: 5\n")
        with patch.dict(os.environ, {"PRIVATE_KEYS": KEY_A}, clear=True):
            config = ConfigManager(path, env_file=None).load()
        assert config.total_tx == 5

    def test_non_numeric_yaml_value_is_config_error(self, tmp_path):
        path = tmp_path / "blaster_config.yaml"
        path.write_text('total_tx: "ten"\n')
        with patch.dict(os.environ, {"PRIVATE_KEYS": KEY_A}, clear=True):
            with pytest.raises(ConfigurationError, match="total_tx"):
                ConfigManager(path, env_file=None).load()

    def test_non_mapping_yaml(self, tmp_path):
        path = tmp_path / "blaster_config.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ConfigurationError):
            ConfigManager(path, env_file=None).read_raw_config()

    def test_write_default_round_trip(self, tmp_path):
        manager = ConfigManager(tmp_path / "conf" / "blaster_config.yaml", env_file=None)
        path = manager.write_default()
        assert path.exists()

        with patch.dict(os.environ, {"PRIVATE_KEYS": KEY_A}, clear=True):
            config = manager.load()
        assert config == BlastConfig(private_keys=(KEY_A,)).validate()

    def test_write_default_refuses_overwrite(self, tmp_path):
        manager = ConfigManager(tmp_path / "blaster_config.yaml", env_file=None)
        manager.write_default()
        with pytest.raises(ConfigurationError):
            manager.write_default()
        manager.write_default(force=True)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
