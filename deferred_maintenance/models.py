"""Data models for deferred maintenance."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping
from urllib.parse import urlparse

SHORT_DESCRIPTION_MAX_LENGTH = 50


class ValidationError(ValueError):
    """Raised when maintenance input fails validation at the boundary."""


class MaintenanceStatus(str, Enum):
    """Lifecycle states of a maintenance Finding."""

    OPEN = "open"
    CLOSED = "closed"


class CloseReason(str, Enum):
    """Why a maintenance Finding was closed."""

    COMPLETE = "COMPLETE"
    ERROR = "ERROR"
    RISK_ACCEPTED = "RISK_ACCEPTED"


def is_web_uri(value: str) -> bool:
    """Return True if value is an absolute http(s) URI with a host."""
    if not isinstance(value, str) or not value or any(c.isspace() for c in value):
        return False
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def _first(value: Any) -> Any:
    """Flatten a J1QL list-valued field such as ``_type: ["github_repo"]``."""
    if isinstance(value, (list, tuple)):
        return value[0] if value else ""
    return value


def _normalize_fields(
    data: Mapping[str, Any], aliases: dict[str, str], record_name: str
) -> dict[str, Any]:
    """Map camelCase or snake_case input keys to dataclass field names."""
    normalized: dict[str, Any] = {}
    unknown = []
    for key, value in data.items():
        name = aliases.get(key)
        if name is None:
            unknown.append(key)
            continue
        normalized[name] = value
    if unknown:
        raise ValidationError(f"Unrecognized {record_name} field(s): {', '.join(sorted(unknown))}")
    return normalized


@dataclass(frozen=True)
class TargetEntity:
    """An entity in the graph that maintenance applies to.

    Owned by the remote store; treated as read-only.
    """

    id: str
    type: str
    class_: str = ""
    key: str = ""
    display_name: str | None = None
    name: str | None = None
    properties: dict[str, Any] = field(default_factory=dict)

    @property
    def label(self) -> str:
        """Display name, falling back to name and then type."""
        return self.display_name or self.name or self.type

    @classmethod
    def from_query_row(cls, row: Mapping[str, Any]) -> "TargetEntity":
        """Build a target entity from a query result row.

        Accepts both the ``{"entity": {...}, "properties": {...}}`` shape and a
        flat dict of ``_id``/``_type``/... keys. JupiterOne returns ``_type``
        and ``_class`` as lists; the first element is used.
        """
        entity = row.get("entity", row)
        properties = dict(row.get("properties") or {})
        entity_type = _first(entity.get("_type"))
        if "_id" not in entity or not entity_type:
            raise ValidationError("Query result row is missing _id or _type")

        return cls(
            id=str(entity["_id"]),
            type=entity_type,
            class_=_first(entity.get("_class", "")),
            key=entity.get("_key", ""),
            display_name=entity.get("displayName") or properties.get("displayName"),
            name=entity.get("name") or properties.get("name"),
            properties=properties,
        )


_CONTENT_FIELDS = {
    "shortDescription": "short_description",
    "short_description": "short_description",
    "description": "description",
    "webLink": "web_link",
    "web_link": "web_link",
    "dueDate": "due_date",
    "due_date": "due_date",
    "createdBy": "created_by",
    "created_by": "created_by",
}


@dataclass(frozen=True)
class MaintenanceContent:
    """The content of one maintenance obligation."""

    short_description: str
    description: str
    web_link: str
    due_date: int
    created_by: str | None = None

    def __post_init__(self) -> None:
        if not self.short_description or not self.short_description.strip():
            raise ValidationError("shortDescription is required")
        if len(self.short_description) > SHORT_DESCRIPTION_MAX_LENGTH:
            raise ValidationError(
                f"shortDescription must be {SHORT_DESCRIPTION_MAX_LENGTH} chars or less (visible in the graph)"
            )
        if not isinstance(self.description, str):
            raise ValidationError("description must be a string")
        if not is_web_uri(self.web_link):
            raise ValidationError(f"webLink must be a valid web URL: {self.web_link!r}")
        if isinstance(self.due_date, bool) or not isinstance(self.due_date, int):
            raise ValidationError("dueDate must be an epoch-millisecond integer")
        if self.created_by is not None and not isinstance(self.created_by, str):
            raise ValidationError("createdBy must be a string")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "MaintenanceContent":
        """Build content from a mapping, rejecting unknown fields."""
        fields = _normalize_fields(data, _CONTENT_FIELDS, "maintenance")
        missing = [name for name in ("short_description", "description", "web_link", "due_date") if name not in fields]
        if missing:
            raise ValidationError(f"Missing maintenance field(s): {', '.join(missing)}")
        return cls(**fields)

    def to_properties(self) -> dict[str, Any]:
        """Render content as graph properties."""
        properties: dict[str, Any] = {
            "shortDescription": self.short_description,
            "description": self.description,
            "webLink": self.web_link,
            "dueDate": self.due_date,
        }
        if self.created_by:
            properties["createdBy"] = self.created_by
        return properties


_CLOSE_FIELDS = {
    "closeReason": "close_reason",
    "close_reason": "close_reason",
    "maintenanceLink": "maintenance_link",
    "maintenance_link": "maintenance_link",
    "closedBy": "closed_by",
    "closed_by": "closed_by",
}


@dataclass(frozen=True)
class CloseInfo:
    """Metadata recorded when a maintenance Finding is closed."""

    close_reason: CloseReason
    maintenance_link: str | None = None
    closed_by: str | None = None

    def __post_init__(self) -> None:
        try:
            reason = CloseReason(self.close_reason)
        except ValueError as e:
            choices = ", ".join(r.value for r in CloseReason)
            raise ValidationError(f"closeReason must be one of {choices}, got {self.close_reason!r}") from e
        object.__setattr__(self, "close_reason", reason)

        if self.maintenance_link:
            if not is_web_uri(self.maintenance_link):
                raise ValidationError(f"maintenanceLink must be a valid web URL: {self.maintenance_link!r}")
        elif reason is not CloseReason.ERROR:
            raise ValidationError("maintenanceLink is required unless closeReason is ERROR")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "CloseInfo":
        """Build close info from a mapping, rejecting unknown fields."""
        fields = _normalize_fields(data, _CLOSE_FIELDS, "close")
        if "close_reason" not in fields:
            raise ValidationError("Missing close field(s): close_reason")
        return cls(**fields)

    def to_properties(self) -> dict[str, Any]:
        """Render the close fields as graph properties."""
        properties: dict[str, Any] = {
            "status": MaintenanceStatus.CLOSED.value,
            "closed": True,
            "closeReason": self.close_reason.value,
        }
        if self.maintenance_link:
            properties["maintenanceLink"] = self.maintenance_link
        if self.closed_by:
            properties["closedBy"] = self.closed_by
        return properties


@dataclass(frozen=True)
class AppliedMaintenance:
    """Result of applying maintenance to one target entity."""

    target: TargetEntity
    maintenance_id: str
    entity_key: str
    finding_id: str
    relationship_key: str


@dataclass(frozen=True)
class MaintenanceSummary:
    """One row of an open maintenance report."""

    maintenance_id: str
    description: str
    due_date: int | None = None
    web_link: str | None = None

    @classmethod
    def from_query_row(cls, row: Mapping[str, Any]) -> "MaintenanceSummary":
        """Build a summary from a ``return m.x as y`` query row."""
        return cls(
            maintenance_id=row.get("maintenanceId", ""),
            description=row.get("description", ""),
            due_date=row.get("dueDate"),
            web_link=row.get("webLink"),
        )
