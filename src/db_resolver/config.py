"""Resolver configuration: sentinels and INI loading."""
import configparser
from dataclasses import dataclass
from typing import Dict

# Visible null in editor input and previews
NULL_GLYPH = "\\0"
NULL_DISPLAY = "null"
# Marks a column the user left untouched in an insert buffer
EMPTY_CELL_VALUE = "\x00"

DEFAULT_SCHEMA = "public"


@dataclass(frozen=True)
class Sentinels:
    """Sentinel strings shared by input coercion and previews."""
    null_glyph: str = NULL_GLYPH
    empty_cell: str = EMPTY_CELL_VALUE

    @classmethod
    def from_parser(cls, parser: configparser.ConfigParser) -> "Sentinels":
        """Read overrides from the ``[resolver]`` section if present.

        Args:
            parser: Loaded configuration

        Returns:
            Sentinels with defaults for missing options
        """
        if not parser.has_section('resolver'):
            return cls()
        section = parser['resolver']
        empty_cell = section.get('empty_cell', fallback=None)
        if empty_cell in (None, '', '<NUL>'):
            empty_cell = EMPTY_CELL_VALUE
        return cls(
            null_glyph=section.get('null_glyph', fallback=NULL_GLYPH),
            empty_cell=empty_cell,
        )


DEFAULT_SENTINELS = Sentinels()


def read_config(config_path: str) -> configparser.ConfigParser:
    """Load an INI file, failing loudly when it does not exist."""
    parser = configparser.ConfigParser(interpolation=None)
    if not parser.read(config_path):
        raise FileNotFoundError(f"Config file not found: {config_path}")
    return parser


def database_options(parser: configparser.ConfigParser) -> Dict[str, str]:
    """Return the ``[database]`` section as a plain dict."""
    if not parser.has_section('database'):
        raise KeyError("Config is missing the [database] section")
    return dict(parser['database'])
