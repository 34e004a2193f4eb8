"""Tests for the plugin-builder workspace."""

import asyncio

import pytest

from fakes import FakeClient
from toolmaster.engine import EngineState
from toolmaster.errors import RemoteCallError
from toolmaster.storage import MemoryStorage
from toolmaster.store import plugin_store
from toolmaster.workspace import (
    PLUGIN_CHAT_CLEARED,
    PLUGIN_ERROR_TEXT,
    PLUGIN_GREETING,
    PLUGIN_NAME_REQUIRED,
    plugin_workspace,
)


def _workspace(storage, config, client=None):
    client = client or FakeClient()
    return plugin_workspace(storage, client_factory=client.factory, config=config)


def test_new_session_is_seeded_with_greeting(storage, config):
    ws = _workspace(storage, config)
    session = ws.mount()

    assert [(m.role, m.text) for m in session.messages] == [("assistant", PLUGIN_GREETING)]
    assert session.name == session.description == session.code == ""


def test_deleting_last_plugin_reseeds(storage, config):
    ws = _workspace(storage, config)
    session = ws.mount()

    ws.delete_session(session.id, lambda prompt: True)

    assert len(ws.sessions) == 1
    assert ws.active.messages[0].text == PLUGIN_GREETING


def test_delete_prompt_names_plugin_project(storage, config):
    ws = _workspace(storage, config)
    session = ws.mount()
    prompts = []

    ws.delete_session(session.id, lambda prompt: prompts.append(prompt) or False)

    assert prompts == ["Are you sure you want to delete this plugin project?"]


class TestFieldEdits:
    """Name/description/code edits and autosave."""

    @pytest.mark.asyncio
    async def test_rapid_code_edits_coalesce_into_one_write(self, config):
        config.autosave_delay_seconds = 0.2
        storage = MemoryStorage({"gemini_api_key": "k"})
        ws = _workspace(storage, config)
        ws.mount()
        writes_before = storage.writes

        for version in ("<?php // 1", "<?php // 2", "<?php // 3"):
            ws.set_code(version)
            await asyncio.sleep(0.02)

        assert storage.writes == writes_before
        await asyncio.sleep(0.4)

        assert storage.writes == writes_before + 1
        assert plugin_store(storage).load()[0].code == "<?php // 3"

    @pytest.mark.asyncio
    async def test_edits_update_last_modified(self, storage, config):
        ws = _workspace(storage, config)
        session = ws.mount()
        session.last_modified = 0

        ws.set_name("Greeter")
        ws.set_description("Says hello")
        await asyncio.sleep(config.autosave_delay_seconds * 3)

        stored = plugin_store(storage).load()[0]
        assert stored.name == "Greeter"
        assert stored.description == "Says hello"
        assert stored.last_modified > 0

    @pytest.mark.asyncio
    async def test_pending_edit_lands_on_its_own_session_after_switch(self, storage, config):
        ws = _workspace(storage, config)
        first = ws.mount()
        second = ws.create_session()

        ws.set_name("Second plugin")
        ws.switch_to(first.id)
        await asyncio.sleep(config.autosave_delay_seconds * 3)

        stored = {s.id: s for s in plugin_store(storage).load()}
        assert stored[second.id].name == "Second plugin"
        assert stored[first.id].name == ""


class TestSend:
    """Refine requests and their outcomes."""

    @pytest.mark.asyncio
    async def test_unnamed_first_request_gets_guidance(self, storage, config):
        client = FakeClient(reply="unused")
        ws = _workspace(storage, config, client)
        session = ws.mount()

        reply = await ws.send("Add a shortcode")

        assert reply.text == PLUGIN_NAME_REQUIRED
        assert [m.role for m in session.messages] == ["assistant", "user", "assistant"]
        assert client.prompts == []

    @pytest.mark.asyncio
    async def test_reply_with_code_updates_artifact(self, storage, config):
        client = FakeClient(reply="Added it.\n```php\n<?php add_shortcode('hi', 'f');\n```")
        ws = _workspace(storage, config, client)
        session = ws.mount()
        ws.set_name("Greeter")

        reply = await ws.send("Add a shortcode")

        assert session.code == "<?php add_shortcode('hi', 'f');"
        assert reply.text == "Added it.\n[Code Updated]"
        assert reply.is_code_update is True
        assert session.messages[-2].text == "Add a shortcode"

    @pytest.mark.asyncio
    async def test_reply_without_code_keeps_artifact(self, storage, config):
        client = FakeClient(reply="Use add_action for hooks.")
        ws = _workspace(storage, config, client)
        session = ws.mount()
        ws.set_name("Greeter")
        ws.set_code("<?php // existing")

        reply = await ws.send("How do hooks work?")

        assert session.code == "<?php // existing"
        assert reply.is_code_update is False
        assert "<?php // existing" in client.prompts[-1]

    @pytest.mark.asyncio
    async def test_defaults_used_for_blank_metadata_after_first_turn(self, storage, config):
        client = FakeClient(reply="ok")
        ws = _workspace(storage, config, client)
        session = ws.mount()
        session.append("user", "earlier")

        await ws.send("Continue")

        assert "Plugin Name: My Plugin" in client.prompts[-1]
        assert "Description: A custom WordPress plugin" in client.prompts[-1]

    @pytest.mark.asyncio
    async def test_remote_error_becomes_single_message(self, storage, config):
        client = FakeClient(error=RemoteCallError("offline"))
        ws = _workspace(storage, config, client)
        session = ws.mount()
        ws.set_name("Greeter")

        reply = await ws.send("Build it")

        assert reply.text == PLUGIN_ERROR_TEXT
        assert [m.role for m in session.messages] == ["assistant", "user", "assistant"]
        assert not ws.is_loading()
        assert ws.engine.state is EngineState.READY

    @pytest.mark.asyncio
    async def test_missing_credential_sets_notice(self, keyless_storage, config):
        ws = _workspace(keyless_storage, config, FakeClient(reply="x"))
        ws.mount()
        ws.set_name("Greeter")

        reply = await ws.send("Build it")

        assert "API key" in ws.notice
        assert "API key" in reply.text

    @pytest.mark.asyncio
    async def test_reply_for_deleted_session_is_dropped(self, storage, config):
        client = FakeClient(reply="```php\n<?php\n```")
        ws = _workspace(storage, config, client)
        other = ws.mount()
        doomed = ws.create_session()
        ws.set_name("Doomed")
        client.gate = asyncio.Event()

        task = asyncio.create_task(ws.send("Build it"))
        await asyncio.sleep(0)
        ws.delete_session(doomed.id, lambda prompt: True)
        client.gate.set()

        assert await task is None
        assert ws.active_id == other.id
        assert other.code == ""


class TestClearAndExport:
    """Clearing the chat and writing the plugin file."""

    def test_clear_chat_keeps_code(self, storage, config):
        ws = _workspace(storage, config)
        session = ws.mount()
        ws.set_code("<?php // keep me")
        session.append("user", "hello")

        assert ws.clear_chat(lambda prompt: True) is True

        assert [m.text for m in session.messages] == [PLUGIN_CHAT_CLEARED]
        assert session.code == "<?php // keep me"

    def test_clear_chat_needs_confirmation(self, storage, config):
        ws = _workspace(storage, config)
        session = ws.mount()
        session.append("user", "hello")

        assert ws.clear_chat(lambda prompt: False) is False
        assert len(session.messages) == 2

    def test_export_writes_slug_named_file(self, storage, config, tmp_path):
        ws = _workspace(storage, config)
        ws.mount()
        ws.set_name("My Greeter Plugin")
        ws.set_code("<?php // greeter")

        path = ws.export_code(tmp_path / "out")

        assert path.name == "my-greeter-plugin.php"
        assert path.read_text(encoding="utf-8") == "<?php // greeter"
