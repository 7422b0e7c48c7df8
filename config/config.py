from copy import deepcopy
from pathlib import Path
from threading import RLock
from typing import Any

from yaml import safe_load

from config.config_yaml_schema import ConfigSchema

DEFAULT_CONFIG_PATH = Path(__file__).parent / "config.yaml"


class Config:
    """YAML settings, validated against `ConfigSchema` on every load."""

    def __init__(self, path: Path = DEFAULT_CONFIG_PATH):
        self._lock = RLock()
        self._path: Path = path
        self._config: dict = {}
        self._load()

    def _load(self):
        with open(self._path, mode="r", encoding="utf-8") as _file_handle:
            _raw = safe_load(_file_handle)
        ConfigSchema.model_validate(_raw)
        with self._lock:
            self._config = _raw

    def reload(self):
        """Re-read the file, the previous settings stay in place if validation fails."""
        self._load()

    def get(self, section: str, key: str = "") -> Any:
        """Copy of a whole section, or of one key inside it.

        Raises:
            ValueError: Empty section name.
            TypeError: Section or key is not a str.
            KeyError: Unknown section or key.
        """
        if not section:
            raise ValueError("Section missing.")

        if not isinstance(section, str) or not isinstance(key, str):
            raise TypeError("Strings expected.")

        with self._lock:
            _section = self._config.get(section)
            if _section is None:
                raise KeyError(f"Section '{section}' not found.")

            if key == "":
                return deepcopy(_section)

            if key not in _section:
                raise KeyError(f"Key '{key}' not found in section '{section}'.")

            return deepcopy(_section[key])


config = Config()
