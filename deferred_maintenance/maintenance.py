"""Maintenance lifecycle: open Findings against entities and close them."""

from typing import Any, Iterable

import structlog

from deferred_maintenance.graph import GraphClient
from deferred_maintenance.identity import derive_entity_key, derive_maintenance_id, derive_relationship_key
from deferred_maintenance.models import (
    AppliedMaintenance,
    CloseInfo,
    MaintenanceContent,
    MaintenanceStatus,
    MaintenanceSummary,
    TargetEntity,
)
from deferred_maintenance.retry import RetryExecutor

logger = structlog.get_logger()

TYPESTRING = "deferred_maintenance"
FINDING_CLASS = "Finding"
RELATIONSHIP_CLASS = "HAS"
OWNER = "jupiterone"

REPO_REPORT_QUERY = (
    'Find {typestring} with closed=false as m that HAS CodeRepo with name = "{repo}" '
    "return m.maintenanceId as maintenanceId, m.shortDescription as description, "
    "m.dueDate as dueDate, m.webLink as webLink ORDER BY m.dueDate ASC"
)
CREATOR_REPORT_QUERY = (
    "Find UNIQUE {typestring} with closed=false and createdBy = '{email}' as m "
    "return m.maintenanceId as maintenanceId, m.shortDescription as description, "
    "m.dueDate as dueDate, m.webLink as webLink ORDER BY m.dueDate ASC"
)


class BatchAbortedError(Exception):
    """Raised when a batch stops at an entity whose remote calls failed.

    Entities before ``index`` stay committed; entities after it were never
    attempted.
    """

    def __init__(self, index: int, entity: TargetEntity, completed: list[Any], cause: BaseException) -> None:
        self.index = index
        self.entity = entity
        self.completed = completed
        self.cause = cause
        super().__init__(f"Batch aborted at entity {index} ({entity.type} {entity.id}): {cause}")


def _quote(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'").replace('"', '\\"')


class MaintenanceLifecycleManager:
    """Apply and close deferred maintenance Findings in the graph.

    Entities are processed one at a time, in order. Every remote call goes
    through the retry executor.
    """

    def __init__(self, client: GraphClient, executor: RetryExecutor | None = None) -> None:
        self.client = client
        self.executor = executor or RetryExecutor()

    def gather_entities(self, query_text: str) -> list[TargetEntity]:
        """Run a query and return its rows as target entities."""
        rows = self.executor.execute(lambda: self.client.query(query_text), "query")
        entities = [TargetEntity.from_query_row(row) for row in rows]
        logger.info("Gathered entities", count=len(entities))
        return entities

    def apply_maintenance(
        self, entities: Iterable[TargetEntity], content: MaintenanceContent
    ) -> list[AppliedMaintenance]:
        """Open a maintenance Finding for each entity and link it with HAS.

        Re-applying identical content to the same entity updates the existing
        Finding instead of creating another one.

        Raises:
            BatchAbortedError: Remote calls for an entity failed for good.
        """
        maintenance_id = derive_maintenance_id(content)
        properties = {
            "owner": OWNER,
            "displayName": content.short_description,
            "maintenanceId": maintenance_id,
            "status": MaintenanceStatus.OPEN.value,
            "closed": False,
            **content.to_properties(),
        }
        applied: list[AppliedMaintenance] = []

        for index, entity in enumerate(entities):
            logger.info(
                "Creating maintenance graph elements",
                entity_type=entity.type,
                entity_id=entity.id,
                maintenance_id=maintenance_id,
            )
            try:
                applied.append(self._apply_one(entity, maintenance_id, properties))
            except Exception as e:
                logger.error("Applying maintenance failed", index=index, entity_id=entity.id, error=str(e))
                raise BatchAbortedError(index, entity, applied, e) from e

        logger.info("Maintenance applied", count=len(applied), maintenance_id=maintenance_id)
        return applied

    def _apply_one(self, entity: TargetEntity, maintenance_id: str, properties: dict[str, Any]) -> AppliedMaintenance:
        entity_key = derive_entity_key(TYPESTRING, entity.class_, entity, entity.id, maintenance_id)
        finding = self.executor.execute(
            lambda: self.client.upsert_entity(entity_key, TYPESTRING, FINDING_CLASS, dict(properties)),
            f"upsert finding {entity_key}",
        )
        finding_id = finding["id"]

        relationship_key = derive_relationship_key(entity.id, finding_id)
        self.executor.execute(
            lambda: self.client.upsert_relationship(
                relationship_key,
                f"{entity.type}_has_{TYPESTRING}",
                RELATIONSHIP_CLASS,
                entity.id,
                finding_id,
                {"displayName": f"{entity.label}:HAS:{TYPESTRING}", "owner": OWNER},
            ),
            f"upsert relationship {relationship_key}",
        )
        return AppliedMaintenance(
            target=entity,
            maintenance_id=maintenance_id,
            entity_key=entity_key,
            finding_id=finding_id,
            relationship_key=relationship_key,
        )

    def close_maintenance(self, entities: Iterable[TargetEntity], close_info: CloseInfo) -> list[TargetEntity]:
        """Close each maintenance Finding, skipping entities that are not Findings.

        Only the close fields are sent, so every other stored field is kept.
        There is no way back to open.

        Returns:
            The Findings that were closed

        Raises:
            BatchAbortedError: Remote calls for a Finding failed for good.
        """
        properties = close_info.to_properties()
        closed: list[TargetEntity] = []

        for index, entity in enumerate(entities):
            if entity.type != TYPESTRING:
                logger.warning(
                    "Skipping entity, as it is not a maintenance finding",
                    entity_type=entity.type,
                    entity_id=entity.id,
                )
                continue
            if not entity.key:
                logger.warning("Skipping maintenance finding without a key", entity_id=entity.id)
                continue

            logger.info("Closing maintenance finding", entity_id=entity.id, display_name=entity.display_name)
            try:
                self.executor.execute(
                    lambda: self.client.upsert_entity(entity.key, TYPESTRING, FINDING_CLASS, dict(properties)),
                    f"close finding {entity.key}",
                )
            except Exception as e:
                logger.error("Closing maintenance failed", index=index, entity_id=entity.id, error=str(e))
                raise BatchAbortedError(index, entity, closed, e) from e
            closed.append(entity)

        logger.info("Maintenance closed", count=len(closed), reason=close_info.close_reason.value)
        return closed

    def open_maintenance_for_repo(self, repo_name: str) -> list[MaintenanceSummary]:
        """List open maintenance attached to a code repository, soonest due first."""
        query_text = REPO_REPORT_QUERY.format(typestring=TYPESTRING, repo=_quote(repo_name))
        return self._summaries(query_text)

    def open_maintenance_created_by(self, email: str) -> list[MaintenanceSummary]:
        """List open maintenance created by a user, soonest due first."""
        query_text = CREATOR_REPORT_QUERY.format(typestring=TYPESTRING, email=_quote(email))
        return self._summaries(query_text)

    def _summaries(self, query_text: str) -> list[MaintenanceSummary]:
        rows = self.executor.execute(lambda: self.client.query(query_text), "report query")
        return [MaintenanceSummary.from_query_row(row) for row in rows]
