"""Configuration loading for ttymon.

Settings live in a two-key ``key=value`` text file:

    theme=Nord
    hz=10

Search order: explicit --config path → ~/.config/ttymon/ttymon.conf → defaults.
Malformed values are ignored field by field and the defaults kept.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from ttymon.state import DEFAULT_HZ

logger = logging.getLogger(__name__)

CONFIG_DIR = Path.home() / ".config" / "ttymon"
_DEFAULT_PATH = CONFIG_DIR / "ttymon.conf"


@dataclass(slots=True)
class Settings:
    theme: str = ""
    hz: int = DEFAULT_HZ


def default_path() -> Path:
    return _DEFAULT_PATH


def parse_config(text: str, base: Settings | None = None) -> Settings:
    """Apply ``key=value`` lines from *text* over *base* (or the defaults)."""
    settings = Settings() if base is None else Settings(base.theme, base.hz)
    for line in text.splitlines():
        key, sep, value = line.partition("=")
        if not sep:
            continue
        key, value = key.strip(), value.strip()
        if key == "theme":
            settings.theme = value
        elif key == "hz":
            try:
                hz = int(value)
            except ValueError:
                logger.debug("ignoring malformed hz value %r", value)
                continue
            if hz > 0:
                settings.hz = hz
            else:
                logger.debug("ignoring non-positive hz value %r", value)
    return settings


def load_config(path: Path | None = None) -> Settings:
    """Load settings, falling back to defaults for anything missing.

    Args:
        path: Explicit config file path (from --config). If None, uses the
              default location ~/.config/ttymon/ttymon.conf.

    Returns:
        The parsed settings. A missing or unreadable file yields defaults.
    """
    path = _DEFAULT_PATH if path is None else path
    if not path.is_file():
        return Settings()
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        logger.warning("ignoring unreadable config %s: %s", path, e)
        return Settings()
    return parse_config(text)


def dump_config(settings: Settings) -> str:
    """Return *settings* as config file text."""
    return f"theme={settings.theme}\nhz={settings.hz}\n"


def save_config(settings: Settings, path: Path | None = None) -> bool:
    """Write *settings*; returns False (and logs) if the file can't be written."""
    path = _DEFAULT_PATH if path is None else path
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(dump_config(settings), encoding="utf-8")
    except OSError as e:
        logger.warning("could not save config %s: %s", path, e)
        return False
    return True
