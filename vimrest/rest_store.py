from __future__ import annotations
import os
from typing import Any, Dict

import structlog

from vimrest.rest_datatypes import JsonError, StoreError
from vimrest.rest_serialize import deserialize, serialize

logger = structlog.get_logger(__name__)

# Reserved keys that switch execution to a remote host
SSH_TO = "sshTo"
SSH_CONFIG = "sshConfig"
SSH_KEY = "sshKey"
SSH_PORT = "sshPort"


class MemoryBackend:
    """Keeps the persisted document in memory. Used by tests and dry runs."""
    def __init__(self, initial: Any = None):
        self.saved: Any = initial
        self.writes = 0

    def load(self) -> Any:
        return self.saved

    def save(self, document: Any) -> None:
        self.saved = document
        self.writes += 1


class JsonFileBackend:
    """Persists the environment as a pretty-printed JSON file."""
    def __init__(self, path: str):
        self.path = path

    def load(self) -> Any:
        # Missing or malformed file -> no document
        if not os.path.isfile(self.path):
            return None
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                text = f.read()
        except OSError as e:
            logger.warning("store.load_failed", path=self.path, error=str(e))
            return None
        try:
            return deserialize(text)
        except JsonError as e:
            logger.warning("store.malformed", path=self.path, error=str(e))
            return None

    def save(self, document: Any) -> None:
        text = serialize(document, pretty=True)
        try:
            with open(self.path, "w", encoding="utf-8") as f:
                f.write(text)
        except OSError as e:
            raise StoreError(str(e)) from e


class EnvironmentStore:
    """The single JSON document holding all script variables.

    Loaded once from the backend; every mutation is written back whole.
    A missing document or one whose root is not an object is replaced by
    an empty object.
    """
    def __init__(self, backend, document: Any = None):
        self.backend = backend
        if document is None:
            document = backend.load()
            if not isinstance(document, dict):
                document = {}
        self.document = document

    def get(self, key: str, default: Any = None) -> Any:
        if not isinstance(self.document, dict):
            return default
        return self.document.get(key, default)

    def __contains__(self, key: str) -> bool:
        return isinstance(self.document, dict) and key in self.document

    def set_var(self, name: str, value: Any) -> None:
        """Stores `value` under `name` and persists the whole document."""
        if not isinstance(self.document, dict):
            raise StoreError("cannot modify environment")
        self.document[name] = value
        self.backend.save(self.document)
        logger.debug("store.set", name=name)

    def ssh_settings(self) -> Dict[str, Any]:
        return {k: self.get(k) for k in (SSH_TO, SSH_CONFIG, SSH_KEY, SSH_PORT) if k in self}


def open_store(path: str) -> EnvironmentStore:
    return EnvironmentStore(JsonFileBackend(path))
