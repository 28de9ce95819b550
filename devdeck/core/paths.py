from __future__ import annotations

from pathlib import Path

from platformdirs import user_config_path

APP_NAME = "devdeck"
APP_AUTHOR = "devdeck"
CONFIG_FILENAME = "config.json"


def resolve_config_dir(override: Path | str | None = None) -> Path:
    if override:
        return Path(override).expanduser()
    return Path(user_config_path(APP_NAME, APP_AUTHOR))


def resolve_config_file(override: Path | str | None = None) -> Path:
    return resolve_config_dir(override) / CONFIG_FILENAME
