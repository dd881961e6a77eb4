"""Configuration loading utilities."""

import json
import logging
import os
from pathlib import Path

from rtchat.config.schema import Config

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# .env → config.json field mapping
# Keys = environment variable names expected in .env
# Values = dot-separated path into config.json (camelCase for JSON compat)
# ---------------------------------------------------------------------------
_ENV_MAP: dict[str, str] = {
    # --- Directory ---
    "RTCHAT_DIRECTORY_URL":     "directory.url",
    "RTCHAT_DIRECTORY_TIMEOUT": "directory.timeout",

    # --- Durable store ---
    "RTCHAT_STORE_PATH":        "store.path",
    "RTCHAT_STORE_KEY":         "store.key",
    "RTCHAT_SESSION_PATH":      "session.path",

    # --- Sync bus ---
    "RTCHAT_BUS_TOPIC":         "bus.topic",
    "RTCHAT_BUS_GROUP":         "bus.group",
    "RTCHAT_BUS_PORT":          "bus.port",

    "RTCHAT_LOG_LEVEL":         "log_level",
}


def _load_dotenv() -> None:
    """Load .env file if present. Searches cwd, then ~/.rtchat/."""
    from dotenv import load_dotenv

    for candidate in [Path.cwd() / ".env", Path.home() / ".rtchat" / ".env"]:
        if candidate.is_file():
            load_dotenv(candidate, override=False)
            return


def _coerce_value(value: str) -> str | int | float:
    """Coerce a string env var to int or float where it looks numeric."""
    try:
        if "." in value:
            return float(value)
        return int(value)
    except ValueError:
        return value


def _inject_env_into_config(data: dict) -> dict:
    """Conditionally merge .env / environment variables into config data.

    Only sets a value if the env var is present AND the config path is
    currently empty or missing; config.json always wins.
    """
    for env_var, dotted_path in _ENV_MAP.items():
        value = os.environ.get(env_var)
        if not value:
            continue

        keys = dotted_path.split(".")
        node = data
        for key in keys[:-1]:
            if key not in node or not isinstance(node[key], dict):
                node[key] = {}
            node = node[key]

        leaf = keys[-1]
        if not node.get(leaf):
            # Paths and URLs stay strings even when they happen to parse
            node[leaf] = value if leaf in ("url", "path", "group") else _coerce_value(value)

    return data


def get_config_path() -> Path:
    """Get the default configuration file path.

    Respects the RTCHAT_CONFIG_PATH env var if set.
    """
    env_path = os.environ.get("RTCHAT_CONFIG_PATH")
    if env_path:
        return Path(env_path)
    return Path.home() / ".rtchat" / "config.json"


def load_config(config_path: Path | None = None) -> Config:
    """
    Load configuration from file or create default.

    Loads .env first, then config.json. Environment variables fill in any
    values not already set in config.json (config.json always wins).

    Args:
        config_path: Optional path to config file. Uses default if not provided.

    Returns:
        Loaded configuration object.
    """
    _load_dotenv()

    path = config_path or get_config_path()
    data: dict = {}

    if path.exists():
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise ValueError("top-level value must be an object")
        except (json.JSONDecodeError, ValueError) as e:
            logger.warning("Failed to load config from %s: %s; using defaults", path, e)
            data = {}

    data = _inject_env_into_config(data)

    return Config.model_validate(data) if data else Config()


def save_config(config: Config, config_path: Path | None = None) -> None:
    """
    Save configuration to file.

    Args:
        config: Configuration to save.
        config_path: Optional path to save to. Uses default if not provided.
    """
    path = config_path or get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)

    data = config.model_dump(by_alias=True)

    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)
