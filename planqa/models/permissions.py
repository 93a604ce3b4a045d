"""
Permission Models

Per-user access records (persisted camelCase, as the admin UI writes them),
request context, global UI filters, and rewriter results.
"""

from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

TableAccess = Literal["Sales", "Revenue"]


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


class UserPermissions(BaseModel):
    """
    Access record for one user.

    For each allowlist: ``None`` means unrestricted, ``[]`` means no access,
    and a non-empty list is the set of permitted values.
    """

    user_id: str = Field(..., min_length=1)
    username: str = Field(..., min_length=1)
    email: str | None = None
    is_admin: bool = False
    allowed_planning_areas: list[str] | None = None
    allowed_scenarios: list[str] | None = None
    allowed_plants: list[str] | None = None
    allowed_table_access: list[TableAccess] | None = None
    created_at: str = Field(default_factory=_now_iso)
    updated_at: str = Field(default_factory=_now_iso)

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "userId": "u-100",
                "username": "planner.north",
                "isAdmin": False,
                "allowedPlanningAreas": ["North"],
                "allowedScenarios": None,
                "allowedPlants": None,
                "allowedTableAccess": [],
            }
        },
    )


class UserPermissionsUpdate(BaseModel):
    """Payload accepted by the permission admin endpoint."""

    username: str = Field(..., min_length=1)
    email: str | None = None
    is_admin: bool = False
    allowed_planning_areas: list[str] | None = None
    allowed_scenarios: list[str] | None = None
    allowed_plants: list[str] | None = None
    allowed_table_access: list[TableAccess] | None = None

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PermissionContext(BaseModel):
    """Who is asking; resolved from request headers or query parameters."""

    user_id: str | None = None
    username: str | None = None

    @property
    def is_anonymous(self) -> bool:
        return not (self.user_id or self.username)


class GlobalFilters(BaseModel):
    """Ad-hoc filters selected in the UI; never persisted."""

    planning_area: str | None = None
    scenario_id: str | None = None
    plant: str | None = None

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PermissionEnforcementResult(BaseModel):
    """Outcome of the permission rewriter."""

    allowed: bool
    modified_sql: str | None = None
    blocked_reason: str | None = None
    applied_filters: list[str] = Field(default_factory=list)
