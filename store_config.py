# store_config.py
from __future__ import annotations

import configparser
import os
import platform
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


DEFAULT_CONFIG_TEXT = """\
[Manager]
command_timeout =
pending_max_passes = 0

[Server]
pw_dump = pw-dump
pw_cli = pw-cli

[Logging]
level = WARNING
"""


def _windows_appdata_dir() -> Path:
    appdata = os.environ.get("APPDATA")
    if appdata:
        return Path(appdata)
    return Path.home() / "AppData" / "Roaming"


def _linux_xdg_config_dir() -> Path:
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg)
    return Path.home() / ".config"


def user_config_dir(app_name: str) -> Path:
    sysname = (platform.system() or "").lower()
    if sysname.startswith("windows"):
        return _windows_appdata_dir() / app_name
    if sysname.startswith("linux"):
        return _linux_xdg_config_dir() / app_name
    return Path.home() / ".config" / app_name


@dataclass(frozen=True)
class ManagerSettings:
    command_timeout: Optional[float] = None
    pending_max_passes: int = 0
    pw_dump: str = "pw-dump"
    pw_cli: str = "pw-cli"
    log_level: str = "WARNING"


@dataclass(frozen=True)
class ConfigStore:
    app_name: str = "pw-connector"
    filename: str = "pw-connector.cfg"

    @property
    def dir_path(self) -> Path:
        return user_config_dir(self.app_name)

    @property
    def file_path(self) -> Path:
        return self.dir_path / self.filename

    def ensure_exists(self) -> None:
        self.dir_path.mkdir(parents=True, exist_ok=True)
        if not self.file_path.exists():
            self.file_path.write_text(DEFAULT_CONFIG_TEXT, encoding="utf-8")

    def load(self) -> configparser.ConfigParser:
        self.ensure_exists()
        cfg = configparser.ConfigParser()
        cfg.read_string(DEFAULT_CONFIG_TEXT)
        cfg.read(self.file_path, encoding="utf-8")
        return cfg

    def save(self, cfg: configparser.ConfigParser) -> None:
        self.ensure_exists()
        with self.file_path.open("w", encoding="utf-8") as f:
            cfg.write(f)

    def settings(self) -> ManagerSettings:
        cfg = self.load()

        raw_timeout = cfg.get("Manager", "command_timeout", fallback="").strip()
        timeout = float(raw_timeout) if raw_timeout else None
        if timeout is not None and timeout <= 0:
            raise ValueError(f"command_timeout must be positive, got {raw_timeout}")

        passes = cfg.getint("Manager", "pending_max_passes", fallback=0)
        if passes < 0:
            raise ValueError(f"pending_max_passes must not be negative, got {passes}")

        return ManagerSettings(
            command_timeout=timeout,
            pending_max_passes=passes,
            pw_dump=cfg.get("Server", "pw_dump", fallback="pw-dump").strip() or "pw-dump",
            pw_cli=cfg.get("Server", "pw_cli", fallback="pw-cli").strip() or "pw-cli",
            log_level=cfg.get("Logging", "level", fallback="WARNING").strip() or "WARNING",
        )
