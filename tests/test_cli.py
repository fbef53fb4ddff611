"""Tests for the command-line dispatcher."""

import pytest

from rpifan import cli
from rpifan.errors import (
    DeviceUnavailable,
    GovernorAlreadyRunning,
    GovernorNotRunning,
    ValidationError,
)
from rpifan.fan_config import PWM_PERIOD, FanConfig, decode
from rpifan.instance import InstanceLock
from rpifan.settings import CONFIG_ENV_VAR


def run(argv, settings):
    args = cli.build_parser().parse_args(argv)
    return cli.dispatch(args, settings)


@pytest.fixture
def spawned(monkeypatch):
    calls = []

    def fake_spawn(interval_ms, config_path=None, debug=False):
        calls.append(interval_ms)
        return 4242

    monkeypatch.setattr(cli, "spawn_governor", fake_spawn)
    return calls


def test_gpio_then_pwm_preserves_fields(settings, fake_channel):
    fake_channel.config_byte = (5 << 5) | 4
    assert run(["-g", "18"], settings) == 0
    assert decode(fake_channel.config_byte) == FanConfig(gpio_num=18, pwm_mode=5)
    assert run(["-p", "3"], settings) == 0
    assert decode(fake_channel.config_byte) == FanConfig(gpio_num=18, pwm_mode=3)


def test_gpio_and_pwm_together(settings, fake_channel):
    assert run(["-g", "12", "-p", "7"], settings) == 0
    assert fake_channel.writes == [FanConfig(gpio_num=12, pwm_mode=7)]


def test_raw_value(settings, fake_channel):
    assert run(["114"], settings) == 0
    assert fake_channel.writes == [FanConfig(gpio_num=18, pwm_mode=3)]


@pytest.mark.parametrize(
    "argv",
    [
        ["-g", "31"],
        ["-g", "1"],
        ["-p", "8"],
        ["-c", "101"],
        ["-a", "0"],
        ["0"],
        ["300"],
        ["-g", "18", "114"],
        ["-a", "1000", "114"],
    ],
)
def test_invalid_values_rejected_before_device(settings, fake_channel, argv):
    with pytest.raises(ValidationError):
        run(argv, settings)
    assert fake_channel.opened_paths == []
    assert fake_channel.writes == []


def test_value_required(settings, fake_channel):
    with pytest.raises(ValidationError):
        run([], settings)
    assert fake_channel.writes == []


def test_duty_cycle_percent(settings, fake_channel):
    assert run(["-c", "100"], settings) == 0
    assert run(["-c", "0"], settings) == 0
    assert fake_channel.duties == [PWM_PERIOD, 0]
    assert fake_channel.writes == []


def test_duty_cycle_failure_is_warning(settings, fake_channel, caplog):
    fake_channel.fail_control = True
    assert run(["-c", "50"], settings) == 0
    assert "IOCTL" in caplog.text


def test_write_failure_is_warning(settings, fake_channel, caplog):
    fake_channel.fail_write = True
    assert run(["-g", "19"], settings) == 0
    assert "Unable to write" in caplog.text


def test_missing_device(settings, tmp_path):
    settings.device_path = str(tmp_path / "missing")
    with pytest.raises(DeviceUnavailable):
        run(["-g", "18"], settings)


def test_adaptive_requires_pwm_pin(settings, fake_channel, spawned):
    fake_channel.config_byte = 4
    with pytest.raises(ValidationError):
        run(["-a", "1000"], settings)
    assert spawned == []


def test_adaptive_spawns_governor(settings, fake_channel, spawned, capsys):
    assert run(["-a", "1000"], settings) == 0
    assert spawned == [1000]
    assert "PID: 4242" in capsys.readouterr().out
    assert fake_channel.writes == []


def test_adaptive_after_gpio_change(settings, fake_channel, spawned):
    fake_channel.config_byte = 4
    assert run(["-g", "13", "-a", "500"], settings) == 0
    assert fake_channel.writes == [FanConfig(gpio_num=13, pwm_mode=0)]
    assert spawned == [500]


def test_adaptive_refused_while_running(settings, fake_channel, spawned):
    with InstanceLock(settings.pid_file):
        with pytest.raises(GovernorAlreadyRunning):
            run(["-a", "1000"], settings)
    assert spawned == []


def test_kill_without_governor(settings, fake_channel):
    with pytest.raises(GovernorNotRunning):
        run(["-k"], settings)
    assert fake_channel.opened_paths == []


def test_status(settings, fake_channel, capsys):
    fake_channel.duties = [PWM_PERIOD // 2]
    assert run(["-s"], settings) == 0
    out = capsys.readouterr().out
    assert "gpio=18" in out
    assert "50.0%" in out
    assert "not running" in out


def test_main_exit_codes(settings, tmp_path, monkeypatch):
    config = tmp_path / "config.yaml"
    config.write_text(f"device_path: {tmp_path / 'missing'}\npid_file: {settings.pid_file}\n")
    monkeypatch.setenv(CONFIG_ENV_VAR, str(config))
    monkeypatch.setattr(cli, "configure_logging", lambda debug: None)

    with pytest.raises(SystemExit) as excinfo:
        cli.main(["-g", "40"])
    assert excinfo.value.code == 1

    with pytest.raises(SystemExit) as excinfo:
        cli.main(["-g", "18"])
    assert excinfo.value.code == 1


def test_main_default_interval(settings, fake_channel, spawned, tmp_path, monkeypatch):
    config = tmp_path / "config.yaml"
    config.write_text(f"default_interval_ms: 750\npid_file: {settings.pid_file}\n")
    monkeypatch.setenv(CONFIG_ENV_VAR, str(config))
    monkeypatch.setattr(cli, "configure_logging", lambda debug: None)

    with pytest.raises(SystemExit) as excinfo:
        cli.main(["-a"])
    assert excinfo.value.code == 0
    assert spawned == [750]


def test_adaptive_on_non_pwm_pin_writes_nothing(settings, fake_channel, spawned):
    with pytest.raises(ValidationError):
        run(["-g", "4", "-a", "500"], settings)
    assert fake_channel.writes == []
    assert fake_channel.closed
    assert spawned == []


def test_adaptive_while_running_writes_nothing(settings, fake_channel, spawned):
    fake_channel.config_byte = 4
    with InstanceLock(settings.pid_file):
        with pytest.raises(GovernorAlreadyRunning):
            run(["-g", "13", "-a", "500"], settings)
    assert fake_channel.writes == []
    assert spawned == []


def test_bare_adaptive_uses_configured_interval(settings, fake_channel, spawned):
    args = cli.build_parser().parse_args(["-a"])
    assert args.adaptive == cli.DEFAULT_INTERVAL
    settings.default_interval_ms = 1500
    assert cli.dispatch(args, settings) == 0
    assert spawned == [1500]


def test_adaptive_interval_must_be_integer():
    with pytest.raises(SystemExit) as excinfo:
        cli.build_parser().parse_args(["-a", "soon"])
    assert excinfo.value.code == 2


def test_main_reports_bad_config(tmp_path, monkeypatch, capsys):
    config = tmp_path / "config.yaml"
    config.write_text("default_interval_ms: fast\n")
    monkeypatch.setenv(CONFIG_ENV_VAR, str(config))

    with pytest.raises(SystemExit) as excinfo:
        cli.main(["-s"])
    assert excinfo.value.code == 1
    assert "✗ default_interval_ms" in capsys.readouterr().err
