"""Load the gate configuration from the repository."""

import logging
from pathlib import Path

import yaml
from pydantic import ValidationError

from pushgate.models.config import GateConfiguration

log = logging.getLogger(__name__)

CONFIG_FILE_NAME = "pushgate.yaml"


class ConfigurationMissingError(FileNotFoundError):
    """Raised when no configuration file can be found."""


def load_configuration(
    repo_root: Path, config_path: Path | None = None
) -> GateConfiguration:
    """Load and validate the gate configuration.

    Args:
        repo_root: Repository root, searched for pushgate.yaml
        config_path: Explicit configuration file, overrides the search

    Returns:
        The validated configuration

    Raises:
        ConfigurationMissingError: If the configuration file does not exist
        ValueError: If the file is empty, not valid YAML, or fails validation

    """
    path = config_path if config_path is not None else repo_root / CONFIG_FILE_NAME

    if not path.is_file():
        raise ConfigurationMissingError(f"Configuration file not found: {path}")

    log.debug("Loading configuration from %s", path)
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        raise ValueError(f"Empty configuration file: {path}")

    if not isinstance(data, dict):
        raise ValueError(f"Invalid configuration schema in {path}: expected a mapping")

    try:
        return GateConfiguration.model_validate(data)
    except ValidationError as e:
        raise ValueError(f"Invalid configuration schema in {path}: {e}") from e
