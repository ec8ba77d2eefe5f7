"""Configuration loader tests."""
from __future__ import annotations

from pathlib import Path

import pytest

from dockprov.config import AppConfig, ConfigError, RunConfig, load_config


def test_load_config_defaults_when_file_missing(tmp_path: Path) -> None:
    """Defaults apply when no config file is present."""
    config = load_config(config_file=tmp_path / "absent.yml", env={})

    assert isinstance(config, AppConfig)
    assert config.logs_dir == Path("/var/log/dockprov")
    assert config.os_release == Path("/etc/os-release")
    assert config.channel == "stable"
    assert config.install_compose is True
    assert config.download_timeout == 30.0
    assert config.repository.base_url == "https://download.docker.com/linux"
    assert config.prerequisite_tools == ("gpg", "lsb_release")


def test_load_config_reads_yaml_file(tmp_path: Path) -> None:
    """Values are loaded from the YAML config file."""
    cfg = tmp_path / "dockprov.yml"
    cfg.write_text(
        "channel: test\n"
        "install_compose: false\n"
        "compose_version: v2.29.1\n"
        "logs_dir: {logs}\n"
        "repository:\n"
        "  base_url: https://mirror.example.com/docker/linux/\n"
    )
    cfg.write_text(cfg.read_text().format(logs=str(tmp_path / "logs")))

    config = load_config(config_file=cfg, env={})

    assert config.config_file == cfg
    assert config.channel == "test"
    assert config.install_compose is False
    assert config.compose_version == "v2.29.1"
    assert config.logs_dir == tmp_path / "logs"
    assert config.repository.base_url == "https://mirror.example.com/docker/linux"


def test_env_overrides_take_precedence(tmp_path: Path) -> None:
    """Environment variables override defaults and file settings."""
    cfg = tmp_path / "config.yml"
    cfg.write_text("channel: test\ndownload_timeout: 10\n")
    env = {
        "DOCKPROV_CHANNEL": "stable",
        "DOCKPROV_INSTALL_COMPOSE": "false",
        "DOCKPROV_DOWNLOAD_TIMEOUT": "45",
        "DOCKPROV_LOGS_DIR": str(tmp_path / "logs"),
        "DOCKPROV_REPOSITORY__BASE_URL": "https://mirror.example.com/linux",
    }

    config = load_config(config_file=cfg, env=env)

    assert config.channel == "stable"
    assert config.install_compose is False
    assert config.download_timeout == 45.0
    assert config.logs_dir == tmp_path / "logs"
    assert config.repository.base_url == "https://mirror.example.com/linux"


def test_env_can_select_config_file(tmp_path: Path) -> None:
    """Environment variable selects an alternate config file."""
    cfg = tmp_path / "override.yml"
    cfg.write_text("compose_version: v2.30.0\n")

    config = load_config(env={"DOCKPROV_CONFIG_FILE": str(cfg)})

    assert config.config_file == cfg
    assert config.compose_version == "v2.30.0"


def test_overrides_win_over_env(tmp_path: Path) -> None:
    """Programmatic overrides are applied last."""
    config = load_config(
        config_file=tmp_path / "absent.yml",
        env={"DOCKPROV_OS_RELEASE": "/env/os-release"},
        overrides={"os_release": str(tmp_path / "os-release")},
    )

    assert config.os_release == tmp_path / "os-release"


def test_invalid_config_file_raises(tmp_path: Path) -> None:
    """Invalid YAML raises a ConfigError."""
    cfg = tmp_path / "bad.yml"
    cfg.write_text("- not-a-mapping\n")

    with pytest.raises(ConfigError):
        load_config(config_file=cfg, env={})


def test_unknown_top_level_key_raises(tmp_path: Path) -> None:
    """Unexpected top-level keys trigger ConfigError."""
    cfg = tmp_path / "config.yml"
    cfg.write_text("unknown: value\n")

    with pytest.raises(ConfigError, match="Unknown configuration keys"):
        load_config(config_file=cfg, env={})


def test_unknown_repository_keys_raise(tmp_path: Path) -> None:
    """Extra repository keys produce ConfigError for clarity."""
    cfg = tmp_path / "config.yml"
    cfg.write_text(
        "repository:\n"
        "  base_url: https://download.docker.com/linux\n"
        "  extra: true\n"
    )

    with pytest.raises(ConfigError, match="Unknown repository configuration keys"):
        load_config(config_file=cfg, env={})


def test_plain_http_repository_rejected(tmp_path: Path) -> None:
    """The repository must be reached over HTTPS."""
    with pytest.raises(ConfigError, match="https"):
        load_config(
            config_file=tmp_path / "absent.yml",
            env={"DOCKPROV_REPOSITORY__BASE_URL": "http://mirror.example.com/linux"},
        )


def test_invalid_channel_raises(tmp_path: Path) -> None:
    """Only the stable and test channels exist."""
    cfg = tmp_path / "config.yml"
    cfg.write_text("channel: nightly\n")

    with pytest.raises(ConfigError, match="Invalid channel"):
        load_config(config_file=cfg, env={})


@pytest.mark.parametrize("value", ["0", "-1", "soon"])
def test_invalid_download_timeout_raises(tmp_path: Path, value: str) -> None:
    """Timeouts must be positive numbers."""
    with pytest.raises(ConfigError):
        load_config(
            config_file=tmp_path / "absent.yml",
            env={"DOCKPROV_DOWNLOAD_TIMEOUT": value},
        )


def test_run_config_flags_override_config(tmp_path: Path) -> None:
    """Command-line flags win over configured defaults."""
    config = load_config(
        config_file=tmp_path / "absent.yml",
        env={"DOCKPROV_INSTALL_COMPOSE": "false", "DOCKPROV_CHANNEL": "test"},
    )

    defaults = RunConfig.from_config(config, action="install")
    flagged = RunConfig.from_config(
        config, action="install", channel="STABLE", with_compose=True, target_user=""
    )

    assert (defaults.channel, defaults.with_compose) == ("test", False)
    assert (flagged.channel, flagged.with_compose) == ("stable", True)
    assert flagged.target_user is None


def test_run_config_rejects_unknown_channel(settings: AppConfig) -> None:
    """An invalid ``--channel`` is a validation error."""
    with pytest.raises(ConfigError) as excinfo:
        RunConfig.from_config(settings, action="install", channel="edge")

    assert excinfo.value.exit_code == 2
