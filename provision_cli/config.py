"""
Configuration and exit codes for the provisioning CLI.
"""

from __future__ import annotations

import configparser
import os
import sys
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

import platformdirs
from rich.console import Console

err_console = Console(stderr=True)


class ExitCode(Enum):
    """Standard exit codes for CLI operations."""

    SUCCESS = 0
    GENERAL_ERROR = 1
    INVALID_INPUT = 2
    NOT_FOUND = 3
    PERMISSION_DENIED = 4
    TIMEOUT = 5
    SERVER_ERROR = 6


@dataclass
class Config:
    """Connection and polling settings."""

    base_url: str
    api_token: str = ""
    verify_ssl: bool = True
    ca_cert_path: Optional[str] = None
    connect_timeout: float = 10.0
    read_timeout: float = 30.0
    poll_fast_interval: float = 2.0
    poll_slow_interval: float = 5.0
    poll_fast_ticks: int = 15
    session: Optional[str] = None
    profile: str = "default"

    @staticmethod
    def _parse_bool(value: Optional[str], default: bool = True) -> bool:
        """Parse boolean values from environment variables."""
        if value is None:
            return default
        return value.strip().lower() in ("1", "true", "yes", "on")

    @classmethod
    def _get_config_path(cls, profile: str = "default") -> Path:
        """Get the configuration file path following XDG standards."""
        config_dir = Path(platformdirs.user_config_dir("provision-cli"))
        return config_dir / (f"config.{profile}.ini" if profile != "default" else "config.ini")

    @classmethod
    def _load_config_file(cls, config_path: Path) -> configparser.ConfigParser:
        config = configparser.ConfigParser()
        if config_path.exists():
            try:
                config.read(config_path)
                if os.getenv("PROVISION_DEBUG"):
                    err_console.print(f"[dim]Loaded config from: {config_path}[/dim]")
            except configparser.Error as e:
                err_console.print(
                    f"[yellow]Warning: Failed to read config file {config_path}: {e}[/yellow]"
                )
        return config

    @classmethod
    def from_env(cls, profile: str = "default") -> "Config":
        """Load configuration from config file and environment variables.

        Priority order (highest to lowest):
        1. Environment variables (PROVISION_*)
        2. Config file in XDG config directory (~/.config/provision-cli/config.ini)
        3. Default values
        """
        config_path = cls._get_config_path(profile)
        config = cls._load_config_file(config_path)

        section = profile if config.has_section(profile) else "panel"
        if not config.has_section(section):
            section = "DEFAULT"

        def get_value(key: str, default: str = "") -> str:
            env_value = os.getenv(f"PROVISION_{key}")
            if env_value:
                return env_value
            if config.has_option(section, key.lower()):
                return config.get(section, key.lower())
            return default

        base_url = get_value("BASE_URL")
        api_token = get_value("API_TOKEN")

        if not base_url or not api_token:
            config_path.parent.mkdir(parents=True, exist_ok=True)
            err_console.print(
                f"[red]Error: PROVISION_BASE_URL and PROVISION_API_TOKEN must be set[/red]\n"
                f"[yellow]Please create a config file at: {config_path}[/yellow]\n"
                f"[dim]Example config file:[/dim]\n"
                f"[dim]\\[panel][/dim]\n"
                f"[dim]base_url = https://panel.example.com/api[/dim]\n"
                f"[dim]api_token = your-api-token[/dim]\n"
            )
            sys.exit(ExitCode.INVALID_INPUT.value)

        try:
            return cls(
                base_url=base_url,
                api_token=api_token,
                verify_ssl=cls._parse_bool(get_value("VERIFY_SSL", "true"), default=True),
                ca_cert_path=get_value("CA_CERT_PATH") or None,
                connect_timeout=float(get_value("CONNECT_TIMEOUT", "10")),
                read_timeout=float(get_value("READ_TIMEOUT", "30")),
                poll_fast_interval=float(get_value("POLL_FAST_INTERVAL", "2")),
                poll_slow_interval=float(get_value("POLL_SLOW_INTERVAL", "5")),
                poll_fast_ticks=int(get_value("POLL_FAST_TICKS", "15")),
                session=get_value("SESSION") or None,
                profile=profile,
            )
        except ValueError as e:
            err_console.print(f"[red]Error: invalid numeric setting in configuration: {e}[/red]")
            sys.exit(ExitCode.INVALID_INPUT.value)

    def validate(self) -> bool:
        """Check that the settings are usable."""
        if not self.base_url or not self.api_token:
            return False
        if self.poll_fast_interval <= 0 or self.poll_slow_interval <= 0 or self.poll_fast_ticks < 0:
            return False
        return True
