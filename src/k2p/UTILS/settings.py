"""
Run configuration of the policy generator, and log configuration.

Values given on the command line win over environment variables, which may
come from a `.env` file in the working directory.
"""
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, Field, field_validator

DEFAULT_INFRA_DATA = "infra-settings.json"
DEFAULT_LAYERS_CACHE = "layers_cache"
DEFAULT_LOG_LEVEL = "WARNING"

LOG_FORMAT = "%(levelname)s | %(name)s | %(message)s"


class GeneratorConfig(BaseModel):
    """
    Settings of one policy generation run.
    """
    yaml_file: Optional[Path] = None
    infra_data_file: Path = Path(DEFAULT_INFRA_DATA)
    rules_file: Optional[Path] = None
    config_map_files: List[Path] = []
    use_cached_files: bool = False
    layers_cache_dir: Path = Path(DEFAULT_LAYERS_CACHE)
    silent_unsupported_fields: bool = False
    raw_out: bool = False
    base64_out: bool = False
    policy_out: Optional[Path] = None
    output: Optional[Path] = None
    log_level: str = Field(default=DEFAULT_LOG_LEVEL)

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        level = value.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level {value!r}")
        return level

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None, **overrides) -> "GeneratorConfig":
        """
        Builds the configuration from the environment and explicit values.

        :param dotenv_path: The .env file to load. The one found from the working directory when None.
        :param overrides: Explicit values. None values fall back to the environment.
        :return: A new GeneratorConfig.
        """
        load_dotenv(dotenv_path or find_dotenv(usecwd=True))

        values = {
            "infra_data_file": os.environ.get("K2P_INFRA_DATA"),
            "rules_file": os.environ.get("K2P_RULES_FILE"),
            "layers_cache_dir": os.environ.get("K2P_LAYERS_CACHE"),
            "log_level": os.environ.get("K2P_LOG_LEVEL"),
        }
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**{key: value for key, value in values.items() if value is not None})


def configure_logging(level: str = DEFAULT_LOG_LEVEL) -> None:
    """
    Sends the k2p logs at the given level and above to stderr.
    """
    root_logger = logging.getLogger()
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root_logger.addHandler(handler)
    root_logger.setLevel(logging.WARNING)

    logging.getLogger("k2p").setLevel(getattr(logging, level))
