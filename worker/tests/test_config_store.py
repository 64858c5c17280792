from __future__ import annotations

import json
from pathlib import Path

import pytest

from cadence_worker.app.config_store import CONFIG_FILENAME, ConfigStore
from cadence_worker.app.models import ConfigUpdate
from cadence_worker.app.settings import Settings
from cadence_worker.services.exceptions import StorageFailure, ValidationFailure


@pytest.mark.asyncio
async def test_defaults_come_from_settings(tmp_path: Path) -> None:
    store = ConfigStore(Settings(config_dir=tmp_path))

    view = await store.get_config()

    assert view.provider == "groq"
    assert view.model == "openai/gpt-oss-120b"
    assert view.has_api_key is False
    assert view.use_suno_tags is True
    assert view.max_mode is False
    assert view.lyrics_mode is False


@pytest.mark.asyncio
async def test_saved_overrides_persist(tmp_path: Path) -> None:
    settings = Settings(config_dir=tmp_path)
    store = ConfigStore(settings)

    view = await store.save_config(ConfigUpdate(provider="openai", max_mode=True))
    assert view.provider == "openai"
    assert view.model == "gpt-5-mini"
    assert view.max_mode is True

    await store.save_config(ConfigUpdate(lyrics_mode=True))
    stored = json.loads((tmp_path / CONFIG_FILENAME).read_text(encoding="utf-8"))
    assert stored == {"provider": "openai", "max_mode": True, "lyrics_mode": True}

    reloaded = await ConfigStore(settings).get_config()
    assert reloaded.provider == "openai"
    assert reloaded.max_mode is True
    assert reloaded.lyrics_mode is True


@pytest.mark.asyncio
async def test_unknown_provider_is_rejected(tmp_path: Path) -> None:
    store = ConfigStore(Settings(config_dir=tmp_path))

    with pytest.raises(ValidationFailure) as excinfo:
        await store.save_config(ConfigUpdate(provider="mystery"))

    assert excinfo.value.field == "provider"
    assert not (tmp_path / CONFIG_FILENAME).exists()


@pytest.mark.asyncio
async def test_unknown_model_falls_back_to_provider_default(tmp_path: Path) -> None:
    store = ConfigStore(Settings(config_dir=tmp_path))

    view = await store.save_config(ConfigUpdate(provider="anthropic", model="gpt-5"))

    assert view.model == "claude-sonnet-4-5-20250929"


@pytest.mark.asyncio
async def test_corrupt_config_is_ignored(tmp_path: Path) -> None:
    (tmp_path / CONFIG_FILENAME).write_text("{not json", encoding="utf-8")

    view = await ConfigStore(Settings(config_dir=tmp_path)).get_config()

    assert view.provider == "groq"


@pytest.mark.asyncio
async def test_unwritable_config_raises_storage_failure(tmp_path: Path) -> None:
    store = ConfigStore(Settings(config_dir=tmp_path), path=tmp_path)

    with pytest.raises(StorageFailure):
        await store.save_config(ConfigUpdate(max_mode=True))


@pytest.mark.asyncio
async def test_engine_config_snapshot(tmp_path: Path) -> None:
    settings = Settings(config_dir=tmp_path, groq_api_key="secret-key", max_prompt_chars=500)
    store = ConfigStore(settings)

    config = await store.engine_config()
    assert config.api_key == "secret-key"
    assert config.llm_available is True
    assert config.max_chars == 500

    view = await store.save_config(ConfigUpdate(llm_enabled=False))
    assert view.has_api_key is True
    assert "secret-key" not in view.model_dump_json()
    assert (await store.engine_config()).llm_available is False
    assert config.llm_available is True
