"""Data models for issue migration.

Contains:
    - Status, Resolution, Transition   closed sets of tracker values
    - Issue                            one issue occurrence (server or CSV)
    - IssuePage                        one page of an ``api/issues/search`` response
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class _ParseableEnum(str, Enum):

    @classmethod
    def parse(cls, value: str | None):
        """Return the member for *value*, or None if it is not a known value."""
        try:
            return cls(value)
        except ValueError:
            return None


class Status(_ParseableEnum):
    OPEN = "OPEN"
    CONFIRMED = "CONFIRMED"
    REOPENED = "REOPENED"
    RESOLVED = "RESOLVED"
    CLOSED = "CLOSED"


class Resolution(_ParseableEnum):
    FALSE_POSITIVE = "FALSE-POSITIVE"
    WONTFIX = "WONTFIX"
    FIXED = "FIXED"
    REMOVED = "REMOVED"


class Transition(_ParseableEnum):
    FALSE_POSITIVE = "falsepositive"
    WONTFIX = "wontfix"


# ---------------------------------------------------------------------------
# Issue
# ---------------------------------------------------------------------------

def _optional(value: Any) -> str | None:
    """Normalise a raw field: missing or blank becomes None, numbers become str."""
    if value is None:
        return None
    text = str(value)
    return text if text != "" else None


@dataclass(frozen=True)
class Issue:
    key: str | None
    component: str
    line: str | None
    rule: str
    severity: str | None = None
    status: str | None = None
    resolution: str | None = None

    @classmethod
    def from_json(cls, raw: dict[str, Any]) -> "Issue":
        """Build an Issue from one element of ``issues`` in a search response.

        Fields we do not use are ignored, so new server fields never break
        parsing. SonarQube sends ``line`` as an integer; it is kept as text so
        server and CSV issues compare equal.
        """
        return cls(
            key=_optional(raw.get("key")),
            component=raw.get("component") or "",
            line=_optional(raw.get("line")),
            rule=raw.get("rule") or "",
            severity=_optional(raw.get("severity")),
            status=_optional(raw.get("status")),
            resolution=_optional(raw.get("resolution")),
        )

    @property
    def parsed_component(self) -> str:
        """Component path without the ``<project>:`` prefix."""
        return self.component.rsplit(":", 1)[-1]

    def matches(self, other: "Issue") -> bool:
        """Same occurrence on two servers: equal component, rule and line."""
        return (
            self.component == other.component
            and self.rule == other.rule
            and self.line == other.line
        )


# ---------------------------------------------------------------------------
# Search page
# ---------------------------------------------------------------------------

@dataclass
class IssuePage:
    issues: list[Issue] = field(default_factory=list)
    page_index: int = 1
    total: int = 0

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "IssuePage":
        issues = [Issue.from_json(raw) for raw in data.get("issues") or []]
        paging = data.get("paging") or {}
        return cls(
            issues=issues,
            page_index=int(paging.get("pageIndex", 1)),
            total=int(paging.get("total", len(issues))),
        )
