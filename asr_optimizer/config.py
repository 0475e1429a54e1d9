import copy
import logging
import os
from typing import Optional

import yaml

logger = logging.getLogger(__name__)

if os.environ.get("ASR_OPTIMIZER_HOME"):
    CONFIG_DIR = os.environ["ASR_OPTIMIZER_HOME"]
else:
    CONFIG_DIR = os.path.join(os.path.expanduser("~"), ".asr-optimizer")

CONFIG_PATH = os.path.join(CONFIG_DIR, "config.yaml")

DEFAULT_CONFIG = {
    "server": {
        "host": "0.0.0.0",
        "port": 3000,
        "log_level": "info",
    },
    "database": {
        # Empty means "<CONFIG_DIR>/data/optimization_results".
        "path": "",
    },
    "anthropic": {
        "api_key": "",
        "api_base_url": "https://api.anthropic.com/v1",
        "api_version": "2023-06-01",
        "model": "claude-3-5-sonnet-latest",
        "temperature": 0.5,
        "max_tokens": 1024,
        "timeout_seconds": 60.0,
    },
    "voiceflow": {
        "api_base_url": "https://api.voiceflow.com/v2",
        "transcript_range": "Last 7 Days",
        "timeout_seconds": 30.0,
    },
    "optimization": {
        "split_by_launch": True,
    },
}

_SECTIONS = ("server", "database", "anthropic", "voiceflow", "optimization")

_config_cache = None


def _read_config_file(path: str) -> dict:
    if not os.path.exists(path):
        return {}
    try:
        with open(path, "r") as f:
            raw = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Could not read config file {path}: {e}")
        return {}
    return raw if isinstance(raw, dict) else {}


def load_config(force_reload: bool = False, path: Optional[str] = None) -> dict:
    global _config_cache
    if _config_cache and not force_reload and path is None:
        return _config_cache

    file_config = _read_config_file(path or CONFIG_PATH)

    # Deep-merge known sections so partial configs are still fully usable.
    merged = {**copy.deepcopy(DEFAULT_CONFIG), **file_config}
    for section in _SECTIONS:
        override = file_config.get(section, {}) if isinstance(file_config.get(section), dict) else {}
        merged[section] = {**DEFAULT_CONFIG[section], **override}

    if path is None:
        _config_cache = merged
    return merged


def resolve_db_path(config: Optional[dict] = None) -> str:
    cfg = config or load_config()
    configured = (
        os.environ.get("DB_PATH", "").strip()
        or str(cfg.get("database", {}).get("path") or "").strip()
    )
    if configured:
        return configured
    return os.path.join(CONFIG_DIR, "data", "optimization_results")


def resolve_anthropic_runtime(config: Optional[dict] = None) -> dict:
    """
    Effective Anthropic settings. Environment variables win over the config
    file so a deployment can inject the key without touching disk.
    """
    cfg = config or load_config()
    section = cfg.get("anthropic", {}) if isinstance(cfg.get("anthropic"), dict) else {}
    defaults = DEFAULT_CONFIG["anthropic"]

    api_key = os.environ.get("ANTHROPIC_API_KEY", "").strip() or str(section.get("api_key") or "").strip()
    base_url = (
        os.environ.get("ANTHROPIC_BASE_URL", "").strip()
        or str(section.get("api_base_url") or "").strip()
        or defaults["api_base_url"]
    )
    model = (
        os.environ.get("ANTHROPIC_MODEL", "").strip()
        or str(section.get("model") or "").strip()
        or defaults["model"]
    )
    return {
        "api_key": api_key,
        "api_base_url": base_url.rstrip("/"),
        "api_version": str(section.get("api_version") or defaults["api_version"]),
        "model": model,
        "temperature": float(section.get("temperature", defaults["temperature"])),
        "max_tokens": int(section.get("max_tokens", defaults["max_tokens"])),
        "timeout_seconds": float(section.get("timeout_seconds", defaults["timeout_seconds"])),
    }


def resolve_voiceflow_runtime(config: Optional[dict] = None) -> dict:
    cfg = config or load_config()
    section = cfg.get("voiceflow", {}) if isinstance(cfg.get("voiceflow"), dict) else {}
    defaults = DEFAULT_CONFIG["voiceflow"]
    base_url = (
        os.environ.get("VOICEFLOW_API_BASE_URL", "").strip()
        or str(section.get("api_base_url") or "").strip()
        or defaults["api_base_url"]
    )
    return {
        "api_base_url": base_url.rstrip("/"),
        "transcript_range": str(section.get("transcript_range") or defaults["transcript_range"]),
        "timeout_seconds": float(section.get("timeout_seconds", defaults["timeout_seconds"])),
    }


def resolve_server_settings(config: Optional[dict] = None) -> dict:
    cfg = config or load_config()
    section = cfg.get("server", {}) if isinstance(cfg.get("server"), dict) else {}
    defaults = DEFAULT_CONFIG["server"]
    port_raw = os.environ.get("PORT", "").strip() or section.get("port", defaults["port"])
    return {
        "host": os.environ.get("HOST", "").strip() or str(section.get("host") or defaults["host"]),
        "port": int(port_raw),
        "log_level": str(section.get("log_level") or defaults["log_level"]).lower(),
    }
