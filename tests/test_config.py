import pytest

from puretelnet.config import CONTINUOUS_MODE_MARKER, SETTLE_FIXED, EngineConfig
from puretelnet.exceptions import ConfigurationError


def test_defaults():
    config = EngineConfig().validate()
    assert config.default_port == 23
    assert config.settle_window == 0.5
    assert config.settle_mode == SETTLE_FIXED
    assert config.default_command_timeout == 30.0
    assert config.keepalive_interval == 15.0
    assert config.max_reconnect_attempts == 3
    assert config.reconnect_base_delay == 1.0
    assert config.reconnect_max_delay == 30.0
    assert config.reconnect_jitter == 1.0
    assert config.response_buffer_limit == 256 * 1024
    assert config.socket_timeout == 30.0
    assert config.continuous_mode_marker == CONTINUOUS_MODE_MARKER


def test_from_env_overrides():
    env = {
        "PURETELNET_SETTLE_WINDOW": "0.25",
        "PURETELNET_MAX_RECONNECT_ATTEMPTS": "5",
        "PURETELNET_SETTLE_MODE": "quiescent",
        "UNRELATED": "x",
    }
    config = EngineConfig.from_env(env)
    assert config.settle_window == 0.25
    assert config.max_reconnect_attempts == 5
    assert config.settle_mode == "quiescent"


def test_from_env_invalid_number():
    with pytest.raises(ConfigurationError) as excinfo:
        EngineConfig.from_env({"PURETELNET_SOCKET_TIMEOUT": "soon"})
    assert "PURETELNET_SOCKET_TIMEOUT" in str(excinfo.value)


@pytest.mark.parametrize(
    "overrides",
    [
        {"settle_mode": "adaptive"},
        {"default_port": 0},
        {"min_command_timeout": 10.0, "max_command_timeout": 5.0},
        {"keepalive_interval": 0},
        {"reconnect_jitter": -1},
        {"response_buffer_limit": 0},
    ],
)
def test_validate_rejects(overrides):
    with pytest.raises(ConfigurationError):
        EngineConfig().with_overrides(**overrides)


def test_clamp_command_timeout():
    config = EngineConfig()
    assert config.clamp_command_timeout(None) == 30.0
    assert config.clamp_command_timeout(0.01) == 1.0
    assert config.clamp_command_timeout(10_000) == 300.0
    assert config.clamp_command_timeout(12) == 12.0
