"""
Client-local state for the headless client.

No browser storage is available to a headless client, so each piece of state
lives in its own JSON file `<key>.json` under a storage directory.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Optional, Union

logger = logging.getLogger(__name__)

SERVER_URL = "mcp_server_url"
SESSION_TOKEN = "mcp_session_token"
CODE_VERIFIER = "mcp_code_verifier"
CLIENT_INFO = "mcp_client_info"
DEVICE_CODE = "mcp_device_code"

SESSION_KEYS = (SERVER_URL, SESSION_TOKEN, CODE_VERIFIER, CLIENT_INFO, DEVICE_CODE)

DEFAULT_STORAGE_DIR = ".auth"


class ClientStateStorage:
    """Key-value store backed by one JSON file per key."""

    def __init__(self, storage_dir: Union[str, Path] = DEFAULT_STORAGE_DIR):
        self.storage_dir = Path(storage_dir)
        self.storage_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, key: str) -> Path:
        return self.storage_dir / f"{key}.json"

    def read(self, key: str) -> Optional[Any]:
        """Return the stored value for a key, or None if absent or unreadable"""
        path = self.path_for(key)
        if not path.is_file():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Ignoring unreadable client state {path}: {e}")
            return None

    def write(self, key: str, value: Any) -> None:
        """Persist a value atomically with owner-only permissions.

        Raises:
            OSError: If the file cannot be written.
        """
        path = self.path_for(key)
        fd, tmp_path = tempfile.mkstemp(dir=self.storage_dir, prefix=f".{path.name}.", suffix=".tmp")
        try:
            os.chmod(tmp_path, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(value, f)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

    def delete(self, key: str) -> bool:
        """Remove a key; a missing file is not an error"""
        try:
            self.path_for(key).unlink()
            return True
        except FileNotFoundError:
            return False

    def clear(self) -> None:
        for key in SESSION_KEYS:
            self.delete(key)
