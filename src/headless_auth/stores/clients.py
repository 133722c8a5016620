"""
Durable registry of OAuth client registrations.

Registrations live in memory and are mirrored to a JSON file mapping
client_id -> registration metadata. The file is loaded once at startup
and rewritten on every registration.
"""

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class RegisteredClientStore:
    """Registered OAuth clients backed by a JSON file"""

    def __init__(self, clients_file: str | Path):
        self._path = Path(clients_file)
        self._clients: Dict[str, Dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> int:
        """
        Load registrations from disk, replacing what is in memory.

        A missing file means no clients yet. An unreadable file is logged
        and the store starts empty rather than refusing to boot.
        """
        self._path.parent.mkdir(parents=True, exist_ok=True)
        if not self._path.exists():
            logger.info("No saved clients file found. Starting with empty clients list.")
            self._clients = {}
            return 0

        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Error loading clients from file {self._path}: {e}")
            self._clients = {}
            return 0

        if not isinstance(data, dict):
            logger.error(f"Clients file {self._path} does not contain a mapping, ignoring it")
            self._clients = {}
            return 0

        self._clients = {str(client_id): metadata for client_id, metadata in data.items()}
        logger.info(f"Loaded {len(self._clients)} registered clients from file.")
        return len(self._clients)

    def get_client(self, client_id: str) -> Optional[Dict[str, Any]]:
        if not client_id:
            return None
        return self._clients.get(client_id)

    def list_clients(self) -> List[Dict[str, Any]]:
        return [
            {
                "client_id": client_id,
                "client_name": metadata.get("client_name"),
                "grant_types": metadata.get("grant_types"),
                "registered_at": metadata.get("registered_at"),
            }
            for client_id, metadata in self._clients.items()
        ]

    async def register_client(self, client: Dict[str, Any]) -> Dict[str, Any]:
        """Store a registration and persist the whole registry"""
        client_id = client.get("client_id")
        if not client_id:
            raise ValueError("client_id is required")

        async with self._lock:
            existing = self._clients.get(client_id)
            if existing is not None and existing != client:
                raise ValueError(f"client_id {client_id} is already registered")
            self._clients[client_id] = client
            self._save()

        logger.info(f"Registered OAuth client: client_id={client_id}, name={client.get('client_name')}")
        return client

    def _save(self) -> None:
        text = json.dumps(self._clients, indent=2)
        self._path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_path = tempfile.mkstemp(dir=self._path.parent, prefix=f".{self._path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(text)
            os.replace(tmp_path, self._path)
        except OSError:
            logger.error(f"Error saving clients to file {self._path}", exc_info=True)
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

        logger.info(f"Saved {len(self._clients)} registered clients to file.")

    def __contains__(self, client_id: str) -> bool:
        return client_id in self._clients

    def __len__(self) -> int:
        return len(self._clients)
