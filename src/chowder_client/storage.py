"""
Local cache for the chat transcript and workspace documents.

Storage location: ``GatewayConfig.storage_dir`` (default ~/.chowder/data/)
Files created: chat_history.json, bot_identity.json, user_profile.json

The gateway stays authoritative for the workspace documents; this cache only
lets the application show something before the first sync completes.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Protocol

logger = logging.getLogger(__name__)

CHAT_HISTORY_KEY = "chat_history"
IDENTITY_KEY = "bot_identity"
PROFILE_KEY = "user_profile"


class KeyValueStore(Protocol):
    """Opaque load/save collaborator. Values are JSON-compatible."""

    def load(self, key: str) -> Any | None: ...

    def save(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> None: ...


class JsonFileStore:
    """
    One JSON file per key.

    Contract:
    - Inputs: key (str), JSON-compatible value
    - Outputs: The loaded value, or None if missing or unreadable
    - Side Effects: Writes <directory>/<key>.json (atomically, via rename)
    - Errors: OSError from save() on disk issues
    """

    def __init__(self, directory: Path | str):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        if not key or "/" in key or "\\" in key or key.startswith("."):
            raise ValueError(f"Invalid storage key: {key!r}")
        return self.directory / f"{key}.json"

    def load(self, key: str) -> Any | None:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            with open(path, encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to load {key}: {e}")
            return None

    def save(self, key: str, value: Any) -> None:
        path = self._path(key)
        content = json.dumps(value, indent=2, ensure_ascii=False)
        fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=f".{key}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug(f"Saved {key} ({len(content)} bytes)")

    def delete(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)


class MemoryStore:
    """In-process store for tests and ephemeral sessions."""

    def __init__(self) -> None:
        self.data: dict[str, Any] = {}

    def load(self, key: str) -> Any | None:
        value = self.data.get(key)
        # Round-trip through JSON so callers never share mutable state
        return None if value is None else json.loads(json.dumps(value))

    def save(self, key: str, value: Any) -> None:
        self.data[key] = json.loads(json.dumps(value))

    def delete(self, key: str) -> None:
        self.data.pop(key, None)
