"""Stable identities for maintenance Findings and their relationships."""

import hashlib
import json
from typing import Any, Mapping

from deferred_maintenance.models import MaintenanceContent, TargetEntity


def derive_maintenance_id(content: MaintenanceContent | Mapping[str, Any]) -> str:
    """Hash maintenance content into a 40 character hex identifier.

    A mapping is validated as ``MaintenanceContent`` first, so camelCase and
    snake_case spellings of the same content hash alike. Keys are sorted
    before hashing, so field order never changes the id.

    Raises:
        ValidationError: The mapping is not valid maintenance content.
    """
    if not isinstance(content, MaintenanceContent):
        content = MaintenanceContent.from_mapping(content)
    canonical = json.dumps(content.to_properties(), sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha1(canonical.encode("utf-8")).hexdigest()


def derive_entity_key(
    type_string: str,
    class_: str,
    display_name: TargetEntity | str | None,
    target_id: str,
    maintenance_id: str,
) -> str:
    """Compose the unique ``_key`` of a Finding for one target entity.

    ``class_`` is the class of the target entity, not of the Finding.
    """
    if isinstance(display_name, TargetEntity):
        display_name = display_name.label
    if not display_name:
        raise ValueError("display_name is required to derive an entity key")
    return f"{type_string}:{class_}:{display_name}:{target_id}:{maintenance_id}"


def derive_relationship_key(target_id: str, finding_id: str) -> str:
    """Compose the unique ``_key`` of the HAS edge from target to Finding."""
    return f"{target_id}:HAS:{finding_id}"
