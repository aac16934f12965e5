"""Tests for settings and command catalogue loading."""
from __future__ import annotations

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from imagine_bot.config import (
    DEFAULT_EDIT_MODEL,
    DEFAULT_TEXT_MODEL,
    CommandCatalog,
    CommandCatalogLoader,
    Settings,
    get_catalog,
)
from imagine_bot.models import CommandKind


def test_settings_from_env():
    """Environment variables populate the nested settings groups."""
    with patch.dict(os.environ, {
        "WHATSAPP_TOKEN": "tok",
        "WHATSAPP_PHONE_NUMBER_ID": "123",
        "WHATSAPP_VERIFY_TOKEN": "verify",
        "WHATSAPP_GRAPH_BASE": "https://graph.example/v1/",
        "GEMINI_API_KEY": "key",
        "IMAGINE_EDIT_MODEL": "edit-model",
        "IMAGINE_RETRY_ATTEMPTS": "3",
        "IMAGINE_RETRY_SCHEDULE": "0.5, 1",
        "PORT": "8080",
        "IMAGINE_BOT_NAME": "Tester",
    }):
        settings = Settings.from_env()

    assert settings.whatsapp.access_token == "tok"
    assert settings.whatsapp.phone_number_id == "123"
    assert settings.whatsapp.graph_base == "https://graph.example/v1"
    assert settings.whatsapp.configured is True
    assert settings.image.api_key == "key"
    assert settings.image.edit_model == "edit-model"
    assert settings.image.text_model == DEFAULT_TEXT_MODEL
    assert settings.image.retry_attempts == 3
    assert settings.image.retry_schedule == [0.5, 1.0]
    assert settings.port == 8080
    assert settings.bot_name == "Tester"


def test_settings_defaults(monkeypatch):
    for var in ["PORT", "IMAGINE_MODE", "IMAGINE_BOT_NAME", "IMAGINE_EDIT_MODEL", "IMAGINE_RETRY_SCHEDULE"]:
        monkeypatch.delenv(var, raising=False)
    settings = Settings.from_env()
    assert settings.port == 3000
    assert settings.bot_name == "Khytron"
    assert settings.image.edit_model == DEFAULT_EDIT_MODEL
    assert settings.image.mock_mode is False
    assert settings.image.retry_schedule is None


def test_invalid_values_fall_back(monkeypatch):
    monkeypatch.setenv("PORT", "not-a-port")
    monkeypatch.setenv("IMAGINE_RETRY_SCHEDULE", "1,abc")
    settings = Settings.from_env()
    assert settings.port == 3000
    assert settings.image.retry_schedule is None


def test_validate_reports_missing_credentials():
    issues = Settings().validate()
    joined = "\n".join(issues)
    assert "WHATSAPP_TOKEN" in joined
    assert "GEMINI_API_KEY" in joined


def test_validate_mock_mode_skips_api_key(monkeypatch):
    monkeypatch.setenv("IMAGINE_MODE", "mock")
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    settings = Settings.from_env()
    assert settings.image.mock_mode is True
    assert not any("GEMINI_API_KEY" in issue for issue in settings.validate())


def test_default_catalog_contents():
    """The bundled catalogue carries every command."""
    catalog = CommandCatalogLoader().load()
    names = {command.name for command in catalog.commands}
    assert ".imagine" in names
    assert ".menu" in names
    edit = [c for c in catalog.commands if c.kind == CommandKind.IMAGE_EDIT]
    assert len(edit) == 24
    assert catalog.edit_prefix == "Referring to the body language and facial structure, "
    botak = next(c for c in catalog.commands if c.name == ".botak")
    assert botak.template == "make the person bald"
    assert next(c for c in catalog.commands if c.name == ".edit").takes_argument is True


def test_loader_caches_until_forced(tmp_path: Path):
    path = tmp_path / "commands.yaml"
    path.write_text(
        "edit_prefix: 'P: '\n"
        "image_edit:\n"
        "  - name: .one\n"
        "    template: first\n",
        encoding="utf-8",
    )
    loader = CommandCatalogLoader(path)
    first = loader.load()
    assert loader.load() is first

    path.write_text(
        "image_edit:\n"
        "  - name: .two\n"
        "    template: second\n",
        encoding="utf-8",
    )
    reloaded = loader.load(force=True)
    assert [c.name for c in reloaded.commands] == [".two"]


def test_catalog_rejects_duplicates():
    with pytest.raises(ValueError, match="Duplicate"):
        CommandCatalog.from_dict({
            "image_edit": [
                {"name": ".x", "template": "a"},
                {"name": ".X", "template": "b"},
            ]
        })


def test_catalog_requires_template_or_argument():
    with pytest.raises(ValueError):
        CommandCatalog.from_dict({"image_edit": [{"name": ".empty"}]})


def test_get_catalog_honours_override(tmp_path: Path):
    path = tmp_path / "custom.yaml"
    path.write_text("text_to_image:\n  - name: .draw\n    takes_argument: true\n", encoding="utf-8")
    settings = Settings(commands_file=path)
    catalog = get_catalog(settings)
    assert [c.name for c in catalog.commands] == [".draw"]


def test_get_catalog_reuses_loader(tmp_path: Path):
    path = tmp_path / "cached.yaml"
    path.write_text("image_edit:\n  - name: .one\n    template: first\n", encoding="utf-8")
    settings = Settings(commands_file=path)
    first = get_catalog(settings)
    assert get_catalog(settings) is first

    path.write_text("image_edit:\n  - name: .two\n    template: second\n", encoding="utf-8")
    assert get_catalog(settings) is first
    assert [c.name for c in get_catalog(settings, force=True).commands] == [".two"]
    assert get_catalog() is get_catalog(Settings())
