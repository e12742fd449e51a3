"""
Connection Store

The LLMManager reads connections through the ConnectionStore protocol; it never
keeps connection state of its own. InMemoryConnectionStore is the reference
implementation used by tests and embedding applications that persist settings
themselves (via export_settings / import_settings).

Rules:
- The first connection added becomes active
- Only enabled connections can be active
- Deleting the active connection activates the first remaining enabled one
- Enabled connections are listed in priority order (lower first)
"""

import json
import uuid
from typing import Any, Dict, List, Optional, Protocol

from pydantic import ValidationError

from llamb.config.logging_config import get_logger
from llamb.config.settings import LLMSettings, get_llm_settings
from llamb.llm import (
    Connection,
    ConnectionTestResult,
    LLMError,
    LLMProviderFactory,
)

logger = get_logger(__name__)


REDACTED = "[REDACTED]"


class ConnectionStoreError(LLMError):
    """Unknown connection, disabled connection or invalid import."""
    pass


class ConnectionStore(Protocol):
    """What the LLMManager needs from a settings store."""

    def get_active_connection(self) -> Optional[Connection]:
        ...

    def get_enabled_connections(self) -> List[Connection]:
        ...

    def set_active_connection(self, connection_id: Optional[str]) -> Optional[Connection]:
        ...


class InMemoryConnectionStore:
    """
    Connection store held in process memory.

    Example usage:
        store = InMemoryConnectionStore()
        local = store.add_connection({"name": "Ollama", "endpoint": "http://localhost:11434/v1", "model": "llama3"})
        store.get_active_connection()  # -> local (first connection added)
    """

    def __init__(self, settings: Optional[LLMSettings] = None):
        """
        Initialize an empty store.

        Args:
            settings: Supplies the timeout for connections created without one
        """
        self.settings = settings or get_llm_settings()
        self._connections: List[Connection] = []
        self._active_id: Optional[str] = None

    @staticmethod
    def _generate_id() -> str:
        return str(uuid.uuid4())

    # ------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------

    def add_connection(self, data: Dict[str, Any]) -> Connection:
        """
        Create a connection from a field mapping.

        A fresh id is always assigned and the connection is appended at the
        lowest priority.

        Raises:
            pydantic.ValidationError: Invalid field values
        """
        fields = {key: value for key, value in data.items() if value is not None}
        fields["id"] = self._generate_id()
        fields["priority"] = len(self._connections) + 1
        fields.setdefault("timeout", self.settings.default_timeout)

        connection = Connection.model_validate(fields)
        self._connections.append(connection)

        if len(self._connections) == 1:
            self._active_id = connection.id

        logger.info(f"🗄️ Store: Added connection '{connection.name}' ({connection.type})")
        return connection

    def get_connection(self, connection_id: str) -> Optional[Connection]:
        for connection in self._connections:
            if connection.id == connection_id:
                return connection
        return None

    def list_connections(self) -> List[Connection]:
        return list(self._connections)

    def _index_of(self, connection_id: str) -> int:
        for index, connection in enumerate(self._connections):
            if connection.id == connection_id:
                return index
        raise ConnectionStoreError(f"Connection not found: {connection_id}")

    def update_connection(self, connection_id: str, updates: Dict[str, Any]) -> Connection:
        """
        Apply field updates to a connection (its id never changes).

        Raises:
            ConnectionStoreError: Unknown connection id
            pydantic.ValidationError: Invalid field values
        """
        index = self._index_of(connection_id)
        merged = {**self._connections[index].model_dump(), **updates, "id": connection_id}

        connection = Connection.model_validate(merged)
        self._connections[index] = connection

        logger.info(f"🗄️ Store: Updated connection '{connection.name}'")
        return connection

    def delete_connection(self, connection_id: str) -> bool:
        """
        Remove a connection.

        Raises:
            ConnectionStoreError: Unknown connection id
        """
        index = self._index_of(connection_id)
        removed = self._connections.pop(index)

        if self._active_id == connection_id:
            enabled = [c for c in self._connections if c.enabled]
            self._active_id = enabled[0].id if enabled else None

        logger.info(f"🗄️ Store: Deleted connection '{removed.name}'")
        return True

    # ------------------------------------------------------------
    # Active connection
    # ------------------------------------------------------------

    def get_active_connection(self) -> Optional[Connection]:
        """The active connection, or None if unset or disabled."""
        if self._active_id is None:
            return None

        connection = self.get_connection(self._active_id)
        if connection is None or not connection.enabled:
            return None
        return connection

    def set_active_connection(self, connection_id: Optional[str]) -> Optional[Connection]:
        """
        Activate a connection (None clears the active connection).

        Raises:
            ConnectionStoreError: Unknown or disabled connection
        """
        if connection_id is None:
            self._active_id = None
            return None

        connection = self.get_connection(connection_id)
        if connection is None:
            raise ConnectionStoreError(f"Connection not found: {connection_id}")
        if not connection.enabled:
            raise ConnectionStoreError(f"Cannot activate disabled connection '{connection.name}'")

        self._active_id = connection_id
        logger.debug(f"🗄️ Store: Active connection is now '{connection.name}'")
        return connection

    def get_enabled_connections(self) -> List[Connection]:
        """Enabled connections, lowest priority value first."""
        return sorted(
            (c for c in self._connections if c.enabled),
            key=lambda c: c.priority,
        )

    # ------------------------------------------------------------
    # Import / export
    # ------------------------------------------------------------

    def export_settings(self) -> str:
        """Serialize connections as JSON with API keys redacted."""
        connections = []
        for connection in self._connections:
            data = connection.model_dump()
            data["api_key"] = REDACTED if connection.api_key else None
            connections.append(data)

        return json.dumps(
            {"active_connection_id": self._active_id, "connections": connections},
            indent=2,
        )

    def import_settings(self, settings_json: str) -> List[Connection]:
        """
        Replace all connections with those in an exported JSON document.

        Imported connections get fresh ids; redacted API keys are dropped.
        The first enabled imported connection becomes active.

        Raises:
            ConnectionStoreError: Invalid JSON, document shape or connection fields
        """
        try:
            document = json.loads(settings_json)
        except json.JSONDecodeError as e:
            raise ConnectionStoreError(f"Failed to import settings: {e}") from e

        if not isinstance(document, dict) or not isinstance(document.get("connections"), list):
            raise ConnectionStoreError("Failed to import settings: Invalid settings format")

        imported: List[Connection] = []
        for data in document["connections"]:
            if not isinstance(data, dict):
                raise ConnectionStoreError("Failed to import settings: Invalid connection entry")
            fields = dict(data)
            fields["id"] = self._generate_id()
            if fields.get("api_key") == REDACTED:
                fields["api_key"] = None
            try:
                imported.append(Connection.model_validate(fields))
            except ValidationError as e:
                raise ConnectionStoreError(f"Failed to import settings: {e}") from e

        self._connections = imported
        enabled = self.get_enabled_connections()
        self._active_id = enabled[0].id if enabled else None

        logger.info(f"🗄️ Store: Imported {len(imported)} connection(s)")
        return list(imported)

    # ------------------------------------------------------------
    # Connection test
    # ------------------------------------------------------------

    async def test_connection(
        self,
        connection: Connection,
        providers: Optional[LLMProviderFactory] = None,
    ) -> ConnectionTestResult:
        """
        Probe a connection (stored or not) through its provider.

        Args:
            connection: Connection to probe
            providers: Factory to use (a temporary one is created if omitted)
        """
        if providers is not None:
            return await providers.get_provider(connection.type).test_connection(connection)

        async with LLMProviderFactory() as factory:
            return await factory.get_provider(connection.type).test_connection(connection)
