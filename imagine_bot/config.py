"""Configuration loading utilities for the imagine bot."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .models import Command, CommandKind

logger = logging.getLogger(__name__)


DEFAULT_COMMANDS_PATH = Path(__file__).parent / "data" / "commands.yaml"
DEFAULT_GRAPH_BASE = "https://graph.facebook.com/v22.0"
DEFAULT_TEXT_MODEL = "imagen-3.0-generate-001"
DEFAULT_EDIT_MODEL = "gemini-3-pro-image-preview"


def _env_bool(env_key: str, default: bool) -> bool:
    value = os.getenv(env_key)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(env_key: str, default: int) -> int:
    value = os.getenv(env_key)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning("Invalid integer %s for %s", value, env_key)
        return default


@dataclass(frozen=True)
class WhatsAppSettings:
    """Credentials and endpoints for the WhatsApp Cloud API."""

    access_token: str = ""
    phone_number_id: str = ""
    verify_token: str = ""
    app_secret: str = ""
    graph_base: str = DEFAULT_GRAPH_BASE
    timeout: int = 20

    @property
    def configured(self) -> bool:
        return bool(self.access_token and self.phone_number_id)


@dataclass(frozen=True)
class ImageSettings:
    """Model selection and call policy for the generative image API."""

    api_key: str = ""
    text_model: str = DEFAULT_TEXT_MODEL
    edit_model: str = DEFAULT_EDIT_MODEL
    retry_attempts: int = 1
    retry_schedule: Optional[List[float]] = None
    mock_mode: bool = False


@dataclass(frozen=True)
class Settings:
    """Root settings container built from environment variables."""

    whatsapp: WhatsAppSettings = field(default_factory=WhatsAppSettings)
    image: ImageSettings = field(default_factory=ImageSettings)
    port: int = 3000
    bot_name: str = "Khytron"
    telemetry_db: Path = Path("telemetry.db")
    commands_file: Optional[Path] = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        """Load configuration from environment variables."""
        schedule_env = os.getenv("IMAGINE_RETRY_SCHEDULE")
        retry_schedule: Optional[List[float]] = None
        if schedule_env:
            try:
                retry_schedule = [float(item.strip()) for item in schedule_env.split(",") if item.strip()]
            except ValueError:
                logger.warning("Invalid IMAGINE_RETRY_SCHEDULE value: %s", schedule_env)
                retry_schedule = None

        commands_file = os.getenv("IMAGINE_COMMANDS_FILE")
        return cls(
            whatsapp=WhatsAppSettings(
                access_token=os.getenv("WHATSAPP_TOKEN", ""),
                phone_number_id=os.getenv("WHATSAPP_PHONE_NUMBER_ID", ""),
                verify_token=os.getenv("WHATSAPP_VERIFY_TOKEN", ""),
                app_secret=os.getenv("WHATSAPP_APP_SECRET", ""),
                graph_base=os.getenv("WHATSAPP_GRAPH_BASE", DEFAULT_GRAPH_BASE).rstrip("/"),
                timeout=_env_int("WHATSAPP_TIMEOUT", 20),
            ),
            image=ImageSettings(
                api_key=os.getenv("GEMINI_API_KEY", ""),
                text_model=os.getenv("IMAGINE_TEXT_MODEL", DEFAULT_TEXT_MODEL),
                edit_model=os.getenv("IMAGINE_EDIT_MODEL", DEFAULT_EDIT_MODEL),
                retry_attempts=_env_int("IMAGINE_RETRY_ATTEMPTS", 1),
                retry_schedule=retry_schedule,
                mock_mode=os.getenv("IMAGINE_MODE", "").lower() == "mock",
            ),
            port=_env_int("PORT", 3000),
            bot_name=os.getenv("IMAGINE_BOT_NAME", "Khytron"),
            telemetry_db=Path(os.getenv("IMAGINE_TELEMETRY_DB", "telemetry.db")),
            commands_file=Path(commands_file) if commands_file else None,
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )

    def validate(self) -> list[str]:
        """Return a list of configuration problems; empty when all is well."""
        issues = []
        if not self.whatsapp.access_token:
            issues.append("WHATSAPP_TOKEN not set. Replies cannot be delivered.")
        if not self.whatsapp.phone_number_id:
            issues.append("WHATSAPP_PHONE_NUMBER_ID not set. Replies cannot be delivered.")
        if not self.whatsapp.verify_token:
            issues.append("WHATSAPP_VERIFY_TOKEN not set. Webhook subscription will be refused.")
        if not self.whatsapp.app_secret:
            issues.append("WHATSAPP_APP_SECRET not set. Webhook signatures will not be checked.")
        if not self.image.api_key and not self.image.mock_mode:
            issues.append("GEMINI_API_KEY not set. Image commands will fail.")
        return issues


@dataclass(frozen=True)
class CommandCatalog:
    """Typed view over the commands YAML file."""

    edit_prefix: str
    commands: List[Command]

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "CommandCatalog":
        commands: List[Command] = []
        menu_cfg = data.get("menu")
        if menu_cfg:
            commands.append(
                Command(
                    name=str(menu_cfg["name"]).lower(),
                    kind=CommandKind.MENU,
                    description=str(menu_cfg.get("description", "")),
                )
            )
        for kind_key, kind in (
            ("text_to_image", CommandKind.TEXT_TO_IMAGE),
            ("image_edit", CommandKind.IMAGE_EDIT),
        ):
            for entry in data.get(kind_key) or []:
                takes_argument = bool(entry.get("takes_argument", False))
                template = str(entry.get("template", ""))
                if not takes_argument and not template:
                    raise ValueError(f"Command {entry.get('name')} needs a template or takes_argument")
                commands.append(
                    Command(
                        name=str(entry["name"]).lower(),
                        kind=kind,
                        template=template,
                        takes_argument=takes_argument,
                        description=str(entry.get("description", "")),
                    )
                )
        names = [command.name for command in commands]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"Duplicate command names: {', '.join(duplicates)}")
        return CommandCatalog(edit_prefix=str(data.get("edit_prefix", "")), commands=commands)


class CommandCatalogLoader:
    """Loads and caches the command catalogue from YAML."""

    def __init__(self, path: Path | None = None) -> None:
        self._path = path or DEFAULT_COMMANDS_PATH
        self._cache: CommandCatalog | None = None

    @property
    def path(self) -> Path:
        return self._path

    def load(self, force: bool = False) -> CommandCatalog:
        if self._cache is not None and not force:
            return self._cache
        with self._path.open("r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
        self._cache = CommandCatalog.from_dict(data or {})
        return self._cache


_loaders: Dict[Path, CommandCatalogLoader] = {}


def get_catalog(settings: Optional[Settings] = None, force: bool = False) -> CommandCatalog:
    """Convenience accessor for the configured command catalogue."""

    path = (settings.commands_file if settings is not None else None) or DEFAULT_COMMANDS_PATH
    loader = _loaders.get(path)
    if loader is None:
        loader = _loaders[path] = CommandCatalogLoader(path)
    return loader.load(force=force)


__all__ = [
    "Settings",
    "WhatsAppSettings",
    "ImageSettings",
    "CommandCatalog",
    "CommandCatalogLoader",
    "get_catalog",
]
