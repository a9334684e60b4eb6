"""Shared fixtures: an in-memory graph client and a retry executor that never sleeps."""

from typing import Any, Callable

import pytest

from deferred_maintenance.graph import GraphClient
from deferred_maintenance.models import MaintenanceContent, TargetEntity
from deferred_maintenance.retry import Bounded, RetryExecutor, RetryPolicy

FINDINGS_QUERY = "FIND deferred_maintenance"


class InMemoryGraphClient(GraphClient):
    """Graph client keeping entities and relationships in dicts keyed by ``_key``."""

    def __init__(self) -> None:
        """Initialize in-memory graph."""
        self.entities: dict[str, dict[str, Any]] = {}
        self.relationships: dict[str, dict[str, Any]] = {}
        self.query_results: dict[str, list[dict[str, Any]]] = {}
        self.calls: list[tuple[str, str]] = []
        self.fail_when: Callable[[str, str], bool] = lambda method, key: False
        self.failure: type[Exception] = ConnectionError
        self._next_id = 1

    def _new_id(self) -> str:
        new_id = f"id-{self._next_id}"
        self._next_id += 1
        return new_id

    def query(self, query_text: str) -> list[dict[str, Any]]:
        """Return seeded rows, or every stored Finding for FINDINGS_QUERY."""
        self.calls.append(("query", query_text))
        if self.fail_when("query", query_text):
            raise self.failure("query failed")
        if query_text == FINDINGS_QUERY:
            return [self._row(e) for e in self.findings()]
        return list(self.query_results.get(query_text, []))

    @staticmethod
    def _row(entity: dict[str, Any]) -> dict[str, Any]:
        """Render a stored entity the way J1QL does, with list-valued _type and _class."""
        section = {k: v for k, v in entity.items() if k.startswith("_")}
        section["_type"] = [entity["_type"]]
        section["_class"] = [entity["_class"]]
        return {"entity": section, "properties": dict(entity)}

    def upsert_entity(self, key: str, type_string: str, class_: str, properties: dict[str, Any]) -> dict[str, Any]:
        """Create an entity or merge properties into the existing one."""
        self.calls.append(("upsert_entity", key))
        if self.fail_when("upsert_entity", key):
            raise self.failure(f"upsert_entity failed for {key}")
        entity = self.entities.get(key)
        if entity is None:
            entity = {"_id": self._new_id(), "_key": key, "_type": type_string, "_class": class_}
            self.entities[key] = entity
        entity.update(properties)
        return {"id": entity["_id"]}

    def upsert_relationship(
        self,
        key: str,
        type_string: str,
        class_: str,
        from_id: str,
        to_id: str,
        properties: dict[str, Any],
    ) -> dict[str, Any]:
        """Create a relationship or merge properties into the existing one."""
        self.calls.append(("upsert_relationship", key))
        if self.fail_when("upsert_relationship", key):
            raise self.failure(f"upsert_relationship failed for {key}")
        relationship = self.relationships.get(key)
        if relationship is None:
            relationship = {
                "_id": self._new_id(),
                "_key": key,
                "_type": type_string,
                "_class": class_,
                "_fromEntityId": from_id,
                "_toEntityId": to_id,
            }
            self.relationships[key] = relationship
        relationship.update(properties)
        return {"id": relationship["_id"]}

    def findings(self) -> list[dict[str, Any]]:
        """All stored maintenance Findings."""
        return [e for e in self.entities.values() if e["_type"] == "deferred_maintenance"]


@pytest.fixture
def graph() -> InMemoryGraphClient:
    """Create an empty in-memory graph."""
    return InMemoryGraphClient()


@pytest.fixture
def sleeps() -> list[float]:
    """Collects the waits requested by the retry executor."""
    return []


@pytest.fixture
def executor(sleeps: list[float]) -> RetryExecutor:
    """Create a bounded retry executor that records waits instead of sleeping."""
    return RetryExecutor(RetryPolicy(attempts=Bounded(3), delay=1.0, factor=2.0, max_delay=10.0), sleep=sleeps.append)


@pytest.fixture
def content() -> MaintenanceContent:
    """Sample maintenance content."""
    return MaintenanceContent(
        short_description="Upgrade lodash",
        description="lodash < 4.17.21 has a prototype pollution issue",
        web_link="https://x",
        due_date=1_700_000_000_000,
        created_by="dev@example.com",
    )


@pytest.fixture
def repos() -> list[TargetEntity]:
    """Three code repositories."""
    return [
        TargetEntity(id=f"repo-{n}", type="github_repo", class_="CodeRepo", key=f"gh:{n}", name=f"service-{n}")
        for n in (1, 2, 3)
    ]
