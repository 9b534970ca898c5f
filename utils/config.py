import logging
import os
from typing import Any, Dict

import yaml

from replication.constants import (
    DEFAULT_API_PATH,
    DEFAULT_EXPOSED_META,
    DEFAULT_SIGNATURE_ALGO,
    DEFAULT_SUPPRESSED_STRUCTURES,
    DEFAULT_UPDATE_METHOD,
)
from replication.errors import ConfigurationError
from replication.types import Destination, ReplicationSettings

logger = logging.getLogger(__name__)

TRUTHY = {"1", "true", "yes", "on"}


def env_flag(name: str) -> bool:
    return str(os.environ.get(name, "")).strip().lower() in TRUTHY


def load_config(config_file: str):
    """
    Load configuration settings from a YAML file.

    Args:
        config_file (str): The file path to the YAML configuration file.

    Returns:
        dict: The parsed configuration (an empty file gives an empty dict).

    Raises:
        ConfigurationError: If the file is missing, unreadable or not valid YAML.

    Notes:
        - `yaml.safe_load` is used, so no arbitrary Python objects are built.
    """
    try:
        with open(config_file) as file:
            config = yaml.safe_load(file)
    except FileNotFoundError:
        raise ConfigurationError(f"Configuration file {config_file} not found.")
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Error parsing YAML file: {e}")

    if config is None:
        return {}
    if not isinstance(config, dict):
        raise ConfigurationError(f"Configuration file {config_file} must contain a mapping at the top level.")
    return config


def build_destinations(config: Dict[str, Any]) -> Dict[str, Destination]:
    """
    Build every configured destination, keyed by string id.

    Incomplete entries are still returned (their is_valid() is False) so a
    sync can report them per destination instead of dropping them silently.
    """
    destinations: Dict[str, Destination] = {}
    for dest_id, site in (config.get("destinations") or {}).items():
        site = site or {}
        dest = Destination(
            id=str(dest_id),
            name=str(site.get("name") or ""),
            base_url=str(site.get("site_url") or ""),
            api_key=str(site.get("api_key") or ""),
            api_secret=str(site.get("api_secret") or ""),
            api_path=str(site.get("api_path") or DEFAULT_API_PATH),
            accepts=frozenset(site.get("accepts") or ()),
            update_method=str(site.get("update_method") or DEFAULT_UPDATE_METHOD).upper(),
            signature_algo=str(site.get("signature_algo") or DEFAULT_SIGNATURE_ALGO),
        )
        if not dest.is_valid():
            logger.warning("Destination %s is missing site_url, api_key or api_secret.", dest.id)
        destinations[dest.id] = dest
    return destinations


def settings_from_config(config: Dict[str, Any], dry_run: bool = False) -> ReplicationSettings:
    """ReplicationSettings from the `replication` section; REPLICAST_DEBUG turns request debugging on."""
    rc = config.get("replication") or {}
    script = config.get("script") or {}
    return ReplicationSettings(
        suppressed_structures=list(rc.get("suppressed_structures", DEFAULT_SUPPRESSED_STRUCTURES)),
        suppressed_taxonomies=list(rc.get("suppressed_taxonomies") or []),
        exposed_meta=list(rc.get("exposed_meta", DEFAULT_EXPOSED_META)),
        suppressed_meta=list(rc.get("suppressed_meta") or []),
        force_trash={str(k): bool(v) for k, v in (rc.get("force_trash") or {}).items()},
        dry_run=bool(dry_run or script.get("dry_run", False)),
        debug=bool(rc.get("debug", False)) or env_flag("REPLICAST_DEBUG"),
    )
