"""
Scramblery — Shared Utility Module
===================================
Centralized configuration and logging setup for all Scramblery modules.

Contains:
  - config.yaml loading (merged over built-in defaults)
  - Default option constants used by the options dataclasses
  - setup_logger() for consistently formatted module loggers

Part 1 of 7 — Configuration & Logging
"""

from __future__ import annotations

import copy
import logging
import os
from typing import Optional

import yaml


# ===================================================================
# Configuration
# ===================================================================

_SCRIPT_DIR = os.path.dirname(os.path.abspath(__file__))
_config_path = os.path.join(_SCRIPT_DIR, 'config.yaml')

DEFAULT_CONFIG = {
    "scramble": {
        "enable_phase_scramble": True,
        "intensity": 1.0,
        "padding_mode": "zero",
        "method": "fourier",
        "ratio": 0.5,
        "block_size": 16,
    },
    "face_detection": {
        "model_path": "models/blazeface.onnx",
        "confidence_threshold": 0.75,
        "expansion_factor": 1.2,
        "background_mode": "include",
        "nms_threshold": 0.3,
    },
    "logging": {
        "level": "INFO",
        "log_dir": "logs",
    },
}


def _merge(base: dict, override: dict) -> dict:
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(path: Optional[str] = None) -> dict:
    """Load configuration from config.yaml, filling gaps from DEFAULT_CONFIG.

    An explicit ``path`` must exist; the bundled config.yaml is optional.
    """
    target = path or _config_path
    if path is None and not os.path.exists(target):
        return copy.deepcopy(DEFAULT_CONFIG)
    with open(target, 'r', encoding='utf-8') as f:
        return _merge(DEFAULT_CONFIG, yaml.safe_load(f) or {})


CONFIG = load_config()


# ===================================================================
# Constants (loaded from config.yaml, overridable at runtime)
# ===================================================================

DEFAULT_INTENSITY      = float(CONFIG['scramble']['intensity'])
DEFAULT_PHASE_SCRAMBLE = bool(CONFIG['scramble']['enable_phase_scramble'])
DEFAULT_PADDING_MODE   = str(CONFIG['scramble']['padding_mode'])
DEFAULT_METHOD         = str(CONFIG['scramble']['method'])
DEFAULT_RATIO          = float(CONFIG['scramble']['ratio'])
DEFAULT_BLOCK_SIZE     = int(CONFIG['scramble']['block_size'])

FACE_MODEL_PATH        = CONFIG['face_detection']['model_path']
CONFIDENCE_THRESHOLD   = float(CONFIG['face_detection']['confidence_threshold'])
EXPANSION_FACTOR       = float(CONFIG['face_detection']['expansion_factor'])
BACKGROUND_MODE        = str(CONFIG['face_detection']['background_mode'])
NMS_THRESHOLD          = float(CONFIG['face_detection']['nms_threshold'])

LOG_LEVEL = CONFIG['logging']['level']
LOG_DIR   = CONFIG['logging']['log_dir']


def resolve_path(path: str) -> str:
    """Resolve a config-relative path against the project root."""
    if os.path.isabs(path):
        return path
    return os.path.join(_SCRIPT_DIR, path)


# ===================================================================
# Logging Setup
# ===================================================================

def setup_logger(name: str, level=None) -> logging.Logger:
    """Create a configured logger for Scramblery modules."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            '[%(asctime)s] %(name)-12s %(levelname)-7s %(message)s',
            datefmt='%H:%M:%S'
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)
        logger.propagate = False
    logger.setLevel(level if level is not None else LOG_LEVEL)
    return logger
