# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import yaml
from pathlib import Path
from typing import Any, Dict, Union

# Local Imports
from amplicon_workflow import constants

# ==================================== FUNCTIONS ===================================== #

def resolve_relative_paths(config: Dict, config_dir: Path) -> Dict:
    """Converts any relative paths in the configuration to absolute paths based on
    the directory of the config file."""
    for key, value in config.items():
        if isinstance(value, str):
            # Check if the value is a relative path
            if value.startswith("./") or value.startswith("../"):
                config[key] = (config_dir / value).resolve()
        elif isinstance(value, dict):
            config[key] = resolve_relative_paths(value, config_dir)
    return config


def get_config(
    config_path: Union[str, Path] = constants.DEFAULT_CONFIG
) -> Dict:
    """Load a YAML workflow configuration.

    Args:
        config_path: Path to the YAML file.

    Returns:
        Configuration dictionary with relative paths made absolute.

    Raises:
        FileNotFoundError: If the configuration file does not exist.
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "r") as file:
        config = yaml.safe_load(file) or {}

    config_dir = config_path.resolve().parent
    return resolve_relative_paths(config, config_dir)


def get_section(config: Dict, name: str) -> Dict[str, Any]:
    """Return a config section, or an empty dict if it is missing or null."""
    return config.get(name) or {}
