"""Agent configuration from environment variables and config/config.yaml

Environment variables (optionally from .env) provide the defaults; an
`agent:` section in the YAML file overrides them key by key.
"""

import os
from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv
from loguru import logger


DEFAULT_PORTAL_URL = "https://profound-conkies-c25ade.netlify.app/#"
DEFAULT_GEMINI_MODEL = "gemini-2.5-flash"


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in ('true', '1', 'yes')


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning(f"Ignoring non-numeric {name}={value!r}, using {default}")
        return default


def _env_int(name: str, default: int) -> int:
    return int(_env_float(name, default))


@dataclass(frozen=True)
class AgentSettings:
    """Runtime settings for the portal agent"""

    portal_url: str = DEFAULT_PORTAL_URL
    headless: bool = False
    slow_mo_ms: int = 50

    # Human checkpoint window; fixed per checkpoint, never extended
    checkpoint_timeout_seconds: float = 120.0
    # How long to keep listening for the download side channel
    download_settle_seconds: float = 2.0

    navigation_timeout_ms: int = 10000
    menu_timeout_ms: int = 5000
    element_timeout_ms: int = 30000
    # Pause before closing the browser so a headed run can be watched
    result_linger_seconds: float = 0.0

    gemini_api_key: Optional[str] = field(default=None, repr=False)
    gemini_model: str = DEFAULT_GEMINI_MODEL

    host: str = "0.0.0.0"
    port: int = 4000

    @classmethod
    def from_env(cls) -> "AgentSettings":
        """Build settings from environment variables"""
        return cls(
            portal_url=os.getenv('EID_PORTAL_URL', DEFAULT_PORTAL_URL),
            headless=_env_bool('HEADLESS', False),
            slow_mo_ms=_env_int('SLOW_MO_MS', 50),
            checkpoint_timeout_seconds=_env_float('CHECKPOINT_TIMEOUT_SECONDS', 120.0),
            download_settle_seconds=_env_float('DOWNLOAD_SETTLE_SECONDS', 2.0),
            navigation_timeout_ms=_env_int('NAVIGATION_TIMEOUT_MS', 10000),
            menu_timeout_ms=_env_int('MENU_TIMEOUT_MS', 5000),
            element_timeout_ms=_env_int('ELEMENT_TIMEOUT_MS', 30000),
            result_linger_seconds=_env_float('RESULT_LINGER_SECONDS', 0.0),
            gemini_api_key=os.getenv('GOOGLE_API_KEY') or os.getenv('GEMINI_API_KEY'),
            gemini_model=os.getenv('GEMINI_MODEL', DEFAULT_GEMINI_MODEL),
            host=os.getenv('AGENT_HOST', '0.0.0.0'),
            port=_env_int('AGENT_PORT', 4000),
        )

    def with_overrides(self, overrides: Dict[str, Any]) -> "AgentSettings":
        """Return a copy with known keys replaced; unknown keys are logged and skipped"""
        known = {f.name for f in fields(self)}
        accepted = {}
        for key, value in overrides.items():
            if key in known:
                accepted[key] = value
            else:
                logger.warning(f"Unknown agent setting in config: {key}")
        return replace(self, **accepted)


def _load_yaml_overrides(config_path: str) -> Dict[str, Any]:
    """Load the `agent:` section of config.yaml"""
    try:
        if os.path.exists(config_path):
            with open(config_path, 'r') as f:
                config = yaml.safe_load(f) or {}
                return config.get('agent', {}) or {}
        return {}
    except Exception as e:
        logger.error(f"Error loading agent config from {config_path}: {e}")
        return {}


def load_settings(config_path: Optional[str] = None) -> AgentSettings:
    """
    Load settings from .env, the environment and config.yaml

    Args:
        config_path: Path to config.yaml (default: CONFIG_PATH env or config/config.yaml)

    Returns:
        AgentSettings instance
    """
    load_dotenv()
    config_path = config_path or os.getenv('CONFIG_PATH', 'config/config.yaml')

    settings = AgentSettings.from_env()
    overrides = _load_yaml_overrides(config_path)
    if overrides:
        settings = settings.with_overrides(overrides)
        logger.info(f"Applied {len(overrides)} setting(s) from {config_path}")

    return settings
