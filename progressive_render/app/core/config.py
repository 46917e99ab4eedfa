# config.py
# Description: Configuration loading for the progressive render engine.
#
# Imports
import configparser
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from loguru import logger

from progressive_render.app.core.Rendering.base import RenderConfig

#######################################################################################################################
#
# Functions:

RENDER_SECTION = 'Rendering'


def _project_root() -> Path:
    # __file__ is .../progressive_render/app/core/config.py
    return Path(__file__).resolve().parent.parent.parent


def get_config_path() -> Path:
    """Path of config.txt; ``PRENDER_CONFIG_PATH`` overrides the packaged file."""
    override = os.getenv('PRENDER_CONFIG_PATH')
    if override:
        return Path(override)
    return _project_root() / 'Config_Files' / 'config.txt'


@lru_cache(maxsize=1)
def load_comprehensive_config() -> configparser.ConfigParser:
    """
    Load .env files and config.txt.

    Environment files are loaded without overriding variables already set.
    A missing config.txt yields an empty parser so defaults apply.
    """
    project_root = _project_root()
    candidate_env_paths = [
        project_root / '.env',
        project_root / '.ENV',
        project_root / 'Config_Files' / '.env',
        project_root / 'Config_Files' / '.ENV',
    ]
    for p in candidate_env_paths:
        if p.exists():
            logger.info(f"Loading environment variables from: {str(p)}")
            load_dotenv(dotenv_path=str(p), override=False)

    config_path_obj = get_config_path()
    config_parser = configparser.ConfigParser()
    if not config_path_obj.exists():
        logger.warning(f"Config file not found at {str(config_path_obj)}; using defaults")
        return config_parser

    try:
        config_parser.read(config_path_obj, encoding='utf-8')
    except configparser.Error as e:
        logger.error(f"Error parsing config file {str(config_path_obj)}: {e}")
        raise

    logger.debug(f"load_comprehensive_config(): Sections found in config: {config_parser.sections()}")
    return config_parser


def load_render_settings(config_parser: Optional[configparser.ConfigParser] = None) -> Dict[str, Any]:
    """Return the [Rendering] section as a dict of raw string values (empty values dropped)."""
    config_parser = config_parser if config_parser is not None else load_comprehensive_config()
    if not config_parser.has_section(RENDER_SECTION):
        return {}
    return {
        key: value
        for key, value in config_parser.items(RENDER_SECTION)
        if value is not None and value.strip() != ''
    }


@lru_cache(maxsize=1)
def get_render_config() -> RenderConfig:
    """
    Build the default RenderConfig.

    Priority: PRENDER_* environment > config.txt [Rendering] > built-in defaults.
    """
    settings = {
        key: value
        for key, value in load_render_settings().items()
        if os.getenv(f"PRENDER_{key.upper()}") is None
    }
    config = RenderConfig.from_options(settings)
    logger.debug(f"Render configuration loaded ({len(settings)} values from config.txt)")
    return config


def clear_config_cache() -> None:
    """Drop cached configuration so the next call re-reads files and environment."""
    load_comprehensive_config.cache_clear()
    get_render_config.cache_clear()

#
# End of config.py
#######################################################################################################################
