"""
Unit tests for the run configuration.
"""
import logging
from pathlib import Path

import pytest

from k2p.UTILS.settings import GeneratorConfig, configure_logging

ENV_VARS = ("K2P_INFRA_DATA", "K2P_RULES_FILE", "K2P_LAYERS_CACHE", "K2P_LOG_LEVEL")


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    # Variables loaded from a .env file are removed again on teardown.
    for name in ENV_VARS:
        monkeypatch.setenv(name, "unset")
        monkeypatch.delenv(name)
    monkeypatch.chdir(tmp_path)


def test_defaults():
    config = GeneratorConfig.from_env()

    assert config.infra_data_file == Path("infra-settings.json")
    assert config.layers_cache_dir == Path("layers_cache")
    assert config.rules_file is None
    assert config.log_level == "WARNING"
    assert not config.use_cached_files


def test_environment(monkeypatch):
    monkeypatch.setenv("K2P_INFRA_DATA", "/etc/k2p/infra.json")
    monkeypatch.setenv("K2P_LOG_LEVEL", "debug")

    config = GeneratorConfig.from_env()

    assert config.infra_data_file == Path("/etc/k2p/infra.json")
    assert config.log_level == "DEBUG"


def test_dotenv_file(tmp_path):
    (tmp_path / ".env").write_text("K2P_RULES_FILE=rules.rego\nK2P_LAYERS_CACHE=/var/cache/k2p\n")

    config = GeneratorConfig.from_env()

    assert config.rules_file == Path("rules.rego")
    assert config.layers_cache_dir == Path("/var/cache/k2p")


def test_explicit_values_win(monkeypatch, tmp_path):
    monkeypatch.setenv("K2P_INFRA_DATA", "from-env.json")
    dotenv = tmp_path / "custom.env"
    dotenv.write_text("K2P_RULES_FILE=from-dotenv.rego\n")

    config = GeneratorConfig.from_env(
        dotenv_path=str(dotenv),
        infra_data_file="explicit.json",
        rules_file=None,
        use_cached_files=True,
    )

    assert config.infra_data_file == Path("explicit.json")
    assert config.rules_file == Path("from-dotenv.rego")
    assert config.use_cached_files


def test_invalid_log_level():
    with pytest.raises(ValueError):
        GeneratorConfig(log_level="chatty")


def test_configure_logging():
    root = logging.getLogger()
    handlers = list(root.handlers)
    try:
        configure_logging("DEBUG")

        assert logging.getLogger("k2p").level == logging.DEBUG
        assert root.level == logging.WARNING
        assert len(root.handlers) == 1
    finally:
        root.handlers[:] = handlers
        logging.getLogger("k2p").setLevel(logging.NOTSET)
