# tests/sandbox/test_container_registry.py
"""
Tests for the persisted container-id registry.
"""

import json

import pytest

from opsbox.sandbox.container_registry import ContainerRegistry


@pytest.fixture
def registry(tmp_path) -> ContainerRegistry:
    """Create a registry in a not-yet-existing cache directory."""
    return ContainerRegistry(tmp_path / "cache" / "containers.json")


class TestContainerRegistry:
    """Tests for ContainerRegistry."""

    def test_missing_file_is_empty(self, registry):
        """Test a registry without a file lists nothing."""
        assert registry.list() == []
        assert len(registry) == 0

    def test_add_creates_file(self, registry):
        """Test the first add creates parent directories and the file."""
        registry.add("abc")
        assert registry.path.exists()
        assert json.loads(registry.path.read_text()) == {"container_ids": ["abc"]}

    def test_add_is_idempotent(self, registry):
        """Test adding the same id twice keeps one entry."""
        registry.add("abc")
        registry.add("abc")
        assert registry.list() == ["abc"]

    def test_remove(self, registry):
        """Test removing an id keeps the others in order."""
        for container_id in ("a", "b", "c"):
            registry.add(container_id)
        registry.remove("b")
        assert registry.list() == ["a", "c"]
        assert "b" not in registry

    def test_remove_unknown_is_noop(self, registry):
        """Test removing an unregistered id does nothing."""
        registry.add("a")
        registry.remove("zzz")
        assert registry.list() == ["a"]

    def test_clear(self, registry):
        """Test clearing empties the registry."""
        registry.add("a")
        registry.add("b")
        registry.clear()
        assert registry.list() == []

    def test_persisted_across_instances(self, registry):
        """Test a new instance sees ids written by another."""
        registry.add("a")
        assert ContainerRegistry(registry.path).list() == ["a"]

    def test_corrupt_file_treated_as_empty(self, registry):
        """Test an unreadable file lists nothing and can be overwritten."""
        registry.path.parent.mkdir(parents=True)
        registry.path.write_text("{not json")
        assert registry.list() == []
        registry.add("a")
        assert registry.list() == ["a"]

    def test_no_temp_files_left(self, registry):
        """Test atomic writes do not leave temporary files behind."""
        registry.add("a")
        registry.remove("a")
        assert [p.name for p in registry.path.parent.iterdir()] == ["containers.json"]
