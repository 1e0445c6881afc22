#!/usr/bin/env python3
"""
Scan Catalog Package

Converts the offline-scan update catalog (wsusscn2.cab) into a single JSON
document keyed by update identifier.
"""

import json
from pathlib import Path

def _get_version():
    """Get version from config.json"""
    try:
        config_path = Path(__file__).parent / "config.json"
        with open(config_path, 'r') as f:
            config = json.load(f)
        return config.get("application", {}).get("version", "unknown")
    except (OSError, ValueError):
        return "unknown"

__version__ = _get_version()

__all__ = [
    'core',
    'logging',
    'storage'
]
