# Copyright (c) Syntropy Systems
"""Tests for persisted global hooks."""

from pathlib import Path

import pytest

from mcplab.hooks import HookStore


class TestHookStore:
    """Tests for HookStore CRUD."""

    def test_add_persists(self, tmp_path: Path) -> None:
        path = tmp_path / "hooks.yaml"
        store = HookStore(path)
        hook = store.add("@abort", after="fs__write", when_output={"status": "error"}, description="stop")
        assert hook.id is not None
        assert len(hook.id) == 8

        reloaded = HookStore(path)
        assert [h.id for h in reloaded.list_hooks()] == [hook.id]
        assert reloaded.list_hooks()[0].when_output == {"status": "error"}
        assert "whenOutput" in path.read_text()

    def test_requires_one_trigger(self, tmp_path: Path) -> None:
        store = HookStore(tmp_path / "hooks.yaml")
        with pytest.raises(ValueError):
            _ = store.add("@abort")
        with pytest.raises(ValueError):
            _ = store.add("@abort", before="a", after="b")

    def test_prefix_lookup_enable_remove(self, tmp_path: Path) -> None:
        store = HookStore(tmp_path / "hooks.yaml")
        hook = store.add("@abort", before="fs__read")
        assert hook.id is not None

        assert store.disable(hook.id[:4])
        assert not HookStore(store.path).list_hooks()[0].enabled
        assert store.enable(hook.id)
        assert store.remove(hook.id[:3])
        assert store.list_hooks() == []
        assert not store.remove("missing")

    def test_broken_file_yields_no_hooks(self, tmp_path: Path) -> None:
        path = tmp_path / "hooks.yaml"
        _ = path.write_text("hooks: [unclosed\n")
        assert HookStore(path).list_hooks() == []

    def test_invalid_entries_skipped_and_ids_assigned(self, tmp_path: Path) -> None:
        path = tmp_path / "hooks.yaml"
        _ = path.write_text(
            "hooks:\n"
            "  - run: '@abort'\n"
            "  - after: fs__write\n"
            "    run: '@abort'\n"
        )
        hooks = HookStore(path).list_hooks()
        assert len(hooks) == 1
        assert hooks[0].id is not None
