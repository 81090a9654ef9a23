"""Configuration file and environment defaults for dbcsv."""

from __future__ import annotations

import codecs
import os
from pathlib import Path
from typing import Any

import yaml

COMMANDS = ("load", "dump", "inspect", "copy", "foreach", "paraexp")
DATABASE_ENV = ("DB_ID", "BRUNO_ID", "DATABASE_URL")


def env_database() -> str:
    """Connection string from ``DB_ID``, ``BRUNO_ID`` or ``DATABASE_URL``, first set wins."""
    for name in DATABASE_ENV:
        value = os.environ.get(name, "")
        if value:
            return value
    return ""


def env_charset() -> str:
    """Charset named after the ``.`` of ``LANG``, ``utf-8`` when absent or unknown."""
    lang = os.environ.get("LANG", "")
    _, dot, charset = lang.rpartition(".")
    if not dot or not charset:
        return "utf-8"
    charset = charset.split("@", 1)[0]
    try:
        return codecs.lookup(charset).name
    except LookupError:
        return "utf-8"


def _option_name(key: str) -> str:
    return key.strip().lstrip("-").replace("-", "_")


class DbcsvConfig:
    """Option defaults read from a YAML file.

    The ``defaults`` section applies to every command, the per-command
    sections (``load``, ``dump``, ...) override it for one command.
    """

    def __init__(self, defaults: dict[str, Any] | None = None, commands: dict[str, dict[str, Any]] | None = None) -> None:
        self.defaults = defaults or {}
        self.commands = commands or {}

    def for_command(self, name: str) -> dict[str, Any]:
        """Merged defaults of one command, keyed by click parameter name."""
        merged = {_option_name(k): v for k, v in self.defaults.items()}
        merged.update({_option_name(k): v for k, v in self.commands.get(name, {}).items()})
        if name == "copy" and "connect" in merged:
            # Both ends of a copy default to the common database.
            merged.setdefault("src", merged["connect"])
            merged.setdefault("dst", merged["connect"])
        return merged

    def default_map(self) -> dict[str, dict[str, Any]]:
        """Defaults of every command, suitable as click's ``default_map``."""
        return {name: self.for_command(name) for name in COMMANDS}

    @classmethod
    def from_yaml(cls, config_path: Path) -> DbcsvConfig:
        """Load configuration from a YAML file.

        Args:
            config_path: Path to the YAML configuration file

        Returns:
            DbcsvConfig instance

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config file is invalid

        Example YAML structure:
            defaults:
              database: oracle://scott:tiger@db:1521/orcl
              verbose: 1
            load:
              concurrency: 8
              batch-size: 2048
            dump:
              sep: ";"
              date-format: "%Y-%m-%d"
        """
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        with open(config_path, encoding="utf-8") as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ValueError(f"Invalid YAML in {config_path}: {e}") from e

        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ValueError("Config file must contain a mapping")

        unknown = set(data) - {"defaults", *COMMANDS}
        if unknown:
            raise ValueError(f"Unknown config sections: {', '.join(sorted(unknown))}")

        defaults = data.get("defaults") or {}
        if not isinstance(defaults, dict):
            raise ValueError("'defaults' must be a dictionary")

        commands = {}
        for name in COMMANDS:
            section = data.get(name) or {}
            if not isinstance(section, dict):
                raise ValueError(f"'{name}' must be a dictionary")
            commands[name] = section

        return cls(defaults=defaults, commands=commands)
