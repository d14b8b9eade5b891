# src/opsbox/sandbox/container_registry.py
"""
Persisted registry of container ids created by this process.

Every container id is written here when the container is created and
removed again when the container is cleanly stopped. A container id that
is still listed at startup belongs to a session that crashed; the orphan
sweep in :mod:`opsbox.sandbox.lifecycle` stops those containers and then
clears the registry.

Storage is a small JSON document::

    {"container_ids": ["3f2a...", "9bc1..."]}

Writes go to a temporary file that replaces the registry file, so a crash
mid-write leaves either the old or the new list. A missing or unreadable
file reads as an empty registry.

Concurrency:
    The registry has no locking. It assumes one active task session per
    process; running sessions concurrently requires adding a lock around
    the read-modify-write cycle in :meth:`ContainerRegistry._update`.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Callable, List

logger = logging.getLogger(__name__)


class ContainerRegistry:
    """
    Small persisted set of container ids.

    Args:
        path: Location of the JSON file. Parent directories are created on
            first write.
    """

    def __init__(self, path: Path | str):
        self.path = Path(os.path.expanduser(str(path)))

    def list(self) -> List[str]:
        """Return the registered container ids, oldest first."""
        if not self.path.exists():
            return []
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Container registry at {self.path} is unreadable, treating it as empty: {e}")
            return []

        ids = data.get("container_ids", []) if isinstance(data, dict) else []
        return [str(container_id) for container_id in ids]

    def add(self, container_id: str) -> None:
        def _add(ids: List[str]) -> List[str]:
            return ids if container_id in ids else ids + [container_id]

        self._update(_add)
        logger.debug(f"Registered container {container_id[:12]}")

    def remove(self, container_id: str) -> None:
        self._update(lambda ids: [i for i in ids if i != container_id])
        logger.debug(f"Unregistered container {container_id[:12]}")

    def clear(self) -> None:
        self._update(lambda ids: [])

    def __contains__(self, container_id: str) -> bool:
        return container_id in self.list()

    def __len__(self) -> int:
        return len(self.list())

    def _update(self, mutate: Callable[[List[str]], List[str]]) -> None:
        ids = mutate(self.list())
        self.path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".containers-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump({"container_ids": ids}, f)
            os.replace(tmp_name, self.path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
