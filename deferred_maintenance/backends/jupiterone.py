"""JupiterOne graph client implementation using the jupiterone SDK."""

from typing import Any

import structlog
from jupiterone import JupiterOneClient
from jupiterone.errors import JupiterOneClientError

from deferred_maintenance.graph import GraphClient, GraphRequestError

logger = structlog.get_logger()


class JupiterOneGraphClient(GraphClient):
    """Graph client backed by the JupiterOne GraphQL API.

    JupiterOne's ``createEntity`` and ``createRelationship`` mutations upsert
    on ``_key`` and merge the supplied properties into the stored element.
    Requests the SDK rejects and responses without an element id raise
    ``GraphRequestError``; other SDK and transport errors propagate for retry.
    """

    def __init__(self, account: str, token: str, url: str | None = None) -> None:
        """Initialize JupiterOne client.

        Args:
            account: JupiterOne account ID
            token: JupiterOne API token
            url: GraphQL endpoint, defaults to the SDK's production URL
        """
        if not account:
            raise ValueError("JupiterOne account required")
        if not token:
            raise ValueError("JupiterOne API token required")

        self.account = account
        self.url = url

        logger.debug("Initializing JupiterOne client", account=account, url=url)
        kwargs: dict[str, Any] = {"account": account, "token": token}
        if url:
            kwargs["url"] = url
        self.client = JupiterOneClient(**kwargs)
        logger.info("JupiterOne client initialized", account=account)

    def query(self, query_text: str) -> list[dict[str, Any]]:
        """Run a J1QL query."""
        logger.info("Running J1QL query", query=query_text)
        try:
            response = self.client.query_v1(query_text)
        except JupiterOneClientError as e:
            raise GraphRequestError(f"JupiterOne rejected query: {e}") from e

        rows: Any = response
        if isinstance(response, dict):
            rows = response.get("data", [])
        if not isinstance(rows, list):
            logger.warning("Unexpected J1QL response shape", response_type=type(rows).__name__)
            return []

        logger.info("J1QL query returned", count=len(rows))
        return rows

    def upsert_entity(
        self,
        key: str,
        type_string: str,
        class_: str,
        properties: dict[str, Any],
    ) -> dict[str, Any]:
        """Create or update a JupiterOne entity."""
        logger.debug("Upserting JupiterOne entity", key=key, type=type_string, entity_class=class_)
        try:
            response = self.client.create_entity(
                entity_key=key,
                entity_type=type_string,
                entity_class=class_,
                properties=properties,
            )
        except JupiterOneClientError as e:
            raise GraphRequestError(f"JupiterOne rejected entity {key}: {e}") from e
        entity_id = self._extract_id(response, "entity", "vertex")
        logger.info("JupiterOne entity upserted", key=key, entity_id=entity_id)
        return {"id": entity_id, "response": response}

    def upsert_relationship(
        self,
        key: str,
        type_string: str,
        class_: str,
        from_id: str,
        to_id: str,
        properties: dict[str, Any],
    ) -> dict[str, Any]:
        """Create or update a JupiterOne relationship."""
        logger.debug(
            "Upserting JupiterOne relationship",
            key=key,
            type=type_string,
            relationship_class=class_,
            from_id=from_id,
            to_id=to_id,
        )
        try:
            response = self.client.create_relationship(
                relationship_key=key,
                relationship_type=type_string,
                relationship_class=class_,
                from_entity_id=from_id,
                to_entity_id=to_id,
                properties=properties,
            )
        except JupiterOneClientError as e:
            raise GraphRequestError(f"JupiterOne rejected relationship {key}: {e}") from e
        relationship_id = self._extract_id(response, "relationship", "edge")
        logger.info("JupiterOne relationship upserted", key=key, relationship_id=relationship_id)
        return {"id": relationship_id, "response": response}

    def _extract_id(self, response: dict[str, Any], element: str, wrapper: str) -> str:
        """Pull the element ``_id`` out of a create mutation response.

        The API returns either ``{element: {"_id": ...}}`` or
        ``{wrapper: {"id": ..., element: {"_id": ...}}}``.
        """
        if not isinstance(response, dict):
            raise GraphRequestError(f"Unexpected JupiterOne {element} response: {response!r}")
        direct = response.get(element) or {}
        if direct.get("_id"):
            return direct["_id"]

        wrapped = response.get(wrapper) or {}
        nested = wrapped.get(element) or {}
        if nested.get("_id"):
            return nested["_id"]
        if wrapped.get("id"):
            return wrapped["id"]

        raise GraphRequestError(f"JupiterOne response has no {element} id: {response!r}")
