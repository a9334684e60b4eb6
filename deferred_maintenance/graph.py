"""Graph client interface for deferred maintenance."""

from abc import ABC, abstractmethod
from typing import Any


class GraphRequestError(Exception):
    """Raised when the graph store rejects a request or answers with an unusable response.

    Sending the same request again cannot succeed, so it is never retried.
    """


class GraphClient(ABC):
    """Abstract base class for graph store clients.

    Upserts are keyed by ``key``. When a node or edge already exists at that
    key, the given properties are merged into it: properties not named in the
    call keep their stored values. Closing a Finding relies on this.
    """

    @abstractmethod
    def query(self, query_text: str) -> list[dict[str, Any]]:
        """Run a read-only graph query and return the result rows."""
        pass

    @abstractmethod
    def upsert_entity(
        self,
        key: str,
        type_string: str,
        class_: str,
        properties: dict[str, Any],
    ) -> dict[str, Any]:
        """Create or merge-update an entity.

        Returns:
            Dictionary with at least ``{"id": str}``
        """
        pass

    @abstractmethod
    def upsert_relationship(
        self,
        key: str,
        type_string: str,
        class_: str,
        from_id: str,
        to_id: str,
        properties: dict[str, Any],
    ) -> dict[str, Any]:
        """Create or merge-update a relationship.

        Returns:
            Dictionary with at least ``{"id": str}``
        """
        pass
