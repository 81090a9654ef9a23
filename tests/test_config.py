"""Tests for config module."""

from pathlib import Path

import pytest

from dbcsv.config import DbcsvConfig, env_charset, env_database
from tests.test_helpers import create_config_file


class TestConfigParsing:
    """Test suite for config file parsing."""

    def test_load_valid_config(self, tmp_path: Path) -> None:
        """Test loading defaults and per-command sections."""
        config_file = tmp_path / "config.yaml"
        config_file.write_text("""
defaults:
  connect: sqlite:///shared.db
load:
  batch-size: 10
  --truncate: true
dump:
  sep: ";"
""")

        config = DbcsvConfig.from_yaml(config_file)
        assert config.defaults == {"connect": "sqlite:///shared.db"}
        assert config.for_command("load") == {
            "connect": "sqlite:///shared.db",
            "batch_size": 10,
            "truncate": True,
        }
        assert config.for_command("dump")["sep"] == ";"

    def test_command_overrides_defaults(self, tmp_path: Path) -> None:
        """Test that a command section wins over the defaults section."""
        config_file = create_config_file(
            tmp_path / "config.yaml",
            defaults={"connect": "sqlite:///a.db"},
            dump={"connect": "sqlite:///b.db"},
        )
        config = DbcsvConfig.from_yaml(config_file)
        assert config.for_command("dump")["connect"] == "sqlite:///b.db"
        assert config.for_command("load")["connect"] == "sqlite:///a.db"

    def test_copy_ends_default_to_connect(self, tmp_path: Path) -> None:
        """Test that both ends of a copy default to the common database."""
        config_file = create_config_file(
            tmp_path / "config.yaml", defaults={"connect": "sqlite:///a.db"}, copy={"dst": "sqlite:///b.db"}
        )
        merged = DbcsvConfig.from_yaml(config_file).default_map()["copy"]
        assert merged["src"] == "sqlite:///a.db"
        assert merged["dst"] == "sqlite:///b.db"

    def test_empty_config(self, tmp_path: Path) -> None:
        """Test that an empty file means no defaults."""
        config_file = tmp_path / "config.yaml"
        config_file.write_text("")
        assert DbcsvConfig.from_yaml(config_file).default_map()["load"] == {}

    def test_config_file_not_found(self, tmp_path: Path) -> None:
        """Test error when config file doesn't exist."""
        config_file = tmp_path / "nonexistent.yaml"

        with pytest.raises(FileNotFoundError, match="Config file not found"):
            DbcsvConfig.from_yaml(config_file)

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        """Test error on unparsable YAML."""
        config_file = tmp_path / "config.yaml"
        config_file.write_text("load: [unclosed")

        with pytest.raises(ValueError, match="Invalid YAML"):
            DbcsvConfig.from_yaml(config_file)

    def test_unknown_section(self, tmp_path: Path) -> None:
        """Test error on a section that is no command."""
        config_file = create_config_file(tmp_path / "config.yaml", sync={"job": "x"})

        with pytest.raises(ValueError, match="Unknown config sections: sync"):
            DbcsvConfig.from_yaml(config_file)

    def test_section_must_be_mapping(self, tmp_path: Path) -> None:
        """Test error when a section is a list."""
        config_file = tmp_path / "config.yaml"
        config_file.write_text("load:\n  - a\n")

        with pytest.raises(ValueError, match="'load' must be a dictionary"):
            DbcsvConfig.from_yaml(config_file)

    def test_top_level_must_be_mapping(self, tmp_path: Path) -> None:
        """Test error when the document is not a mapping."""
        config_file = tmp_path / "config.yaml"
        config_file.write_text("- load\n")

        with pytest.raises(ValueError, match="must contain a mapping"):
            DbcsvConfig.from_yaml(config_file)


class TestEnvironment:
    """Test suite for environment defaults."""

    def test_database_precedence(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that DB_ID wins over BRUNO_ID, which wins over DATABASE_URL."""
        assert env_database() == ""
        monkeypatch.setenv("DATABASE_URL", "sqlite:///c.db")
        assert env_database() == "sqlite:///c.db"
        monkeypatch.setenv("BRUNO_ID", "sqlite:///b.db")
        assert env_database() == "sqlite:///b.db"
        monkeypatch.setenv("DB_ID", "sqlite:///a.db")
        assert env_database() == "sqlite:///a.db"

    @pytest.mark.parametrize(
        ("lang", "expected"),
        [
            ("hu_HU.ISO-8859-2", "iso8859-2"),
            ("en_US.UTF-8", "utf-8"),
            ("de_DE.utf8@euro", "utf-8"),
            ("C", "utf-8"),
            ("xx_XX.nosuchcharset", "utf-8"),
        ],
    )
    def test_charset(self, monkeypatch: pytest.MonkeyPatch, lang: str, expected: str) -> None:
        """Test the charset named by LANG."""
        monkeypatch.setenv("LANG", lang)
        assert env_charset() == expected

    def test_charset_without_lang(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test the default without LANG."""
        monkeypatch.delenv("LANG", raising=False)
        assert env_charset() == "utf-8"
