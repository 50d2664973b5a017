"""Streamscout version, read from the VERSION file next to this module."""

import os

_VERSION_FILE = os.path.join(os.path.dirname(__file__), "VERSION")


def _read_version(default: str = "0.1.0") -> str:
    try:
        with open(_VERSION_FILE, encoding="utf-8") as f:
            return f.read().strip() or default
    except FileNotFoundError:
        return default
    except OSError:
        return "0.0.0-dev"


__version__ = _read_version()
