import pytest

from pg_logical_stream import config
from pg_logical_stream.cdc.positions import AckMode


@pytest.fixture
def env(clean_stream_env):
    clean_stream_env.setattr(config, "load_dotenv", lambda: False)
    return clean_stream_env


@pytest.mark.unit
def test_load_settings_defaults(env):
    settings = config.load_settings()

    assert settings.slot_name == ""
    assert settings.plugin == "test_decoding"
    assert settings.plugin_options == ()
    assert settings.ack_mode is AckMode.MANUAL
    assert settings.status_interval == 5.0
    assert settings.feedback_interval == 0.0
    assert settings.poll_mode is False
    assert settings.poll_interval == 1.0
    assert settings.poll_duration is None
    assert settings.output_fd == 1
    assert settings.command_fd == 0
    assert settings.connection_params == ()


@pytest.mark.unit
def test_load_settings_reads_environment(env):
    env.setenv("PGSTREAM_SLOT", " s1 ")
    env.setenv("PGSTREAM_CREATE_SLOT", "yes")
    env.setenv("PGSTREAM_PLUGIN", "wal2json")
    env.setenv("PGSTREAM_PLUGIN_OPTIONS", "format-version=2, include-xids ,")
    env.setenv("PGSTREAM_ACK_MODE", "AUTO")
    env.setenv("PGSTREAM_STATUS_INTERVAL", "2.5")
    env.setenv("PGSTREAM_POLL_MODE", "1")
    env.setenv("PGSTREAM_POLL_DURATION", "30")
    env.setenv("PGSTREAM_OUTPUT_FD", "3")
    env.setenv("PGSTREAM_VERBOSE", "true")

    settings = config.load_settings()

    assert settings.slot_name == "s1"
    assert settings.create_slot is True
    assert settings.plugin == "wal2json"
    assert settings.plugin_options == (("format-version", "2"), ("include-xids", None))
    assert settings.ack_mode is AckMode.AUTO
    assert settings.status_interval == 2.5
    assert settings.poll_mode is True
    assert settings.poll_duration == 30.0
    assert settings.output_fd == 3
    assert settings.verbose is True


@pytest.mark.unit
@pytest.mark.parametrize("raw", ["0", "false", "No", ""])
def test_false_like_values_disable_flags(env, raw):
    env.setenv("PGSTREAM_POLL_MODE", raw)

    assert config.load_settings().poll_mode is False


@pytest.mark.unit
def test_unknown_ack_mode_falls_back_to_manual(env):
    env.setenv("PGSTREAM_ACK_MODE", "sometimes")

    assert config.load_settings().ack_mode is AckMode.MANUAL


@pytest.mark.unit
def test_malformed_numbers_raise_value_error(env):
    env.setenv("PGSTREAM_STATUS_INTERVAL", "soon")

    with pytest.raises(ValueError):
        config.load_settings()


@pytest.mark.unit
@pytest.mark.parametrize(
    "name, raw",
    [
        ("PGSTREAM_POLL_INTERVAL", "0"),
        ("PGSTREAM_STATUS_INTERVAL", "-1"),
        ("PGSTREAM_FEEDBACK_INTERVAL", "-0.5"),
        ("PGSTREAM_POLL_DURATION", "-3"),
        ("PGSTREAM_OUTPUT_FD", "-1"),
    ],
)
def test_out_of_range_values_raise_value_error(env, name, raw):
    env.setenv(name, raw)

    with pytest.raises(ValueError, match=name):
        config.load_settings()
