"""
Pydantic models for Cosimo MCP Server.

Contains the graph entities, tool argument models, and the identity/account
records handed over by the authentication layer.
"""

from typing import Annotated, Any, ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field

Impact = Literal["low", "medium", "high", "critical"]
Complexity = Literal["low", "medium", "high"]
Score = Annotated[int, Field(ge=0, le=100)]


# ============== Graph entities ==============

class Objective(BaseModel):
    """An outcome the user wants ("what it does")."""

    id: str
    title: str
    description: str = ""
    urgency: int = 50
    deadline: str = ""
    impact: str = "medium"
    linkedDeliverables: list[str] = Field(default_factory=list)


class Deliverable(BaseModel):
    """A concrete action ("how it works").

    available_after and due_before are omitted from the stored record
    unless supplied.
    """

    id: str
    title: str
    description: str = ""
    feasibility: int = 50
    complexity: str = "medium"
    blockers: list[Any] = Field(default_factory=list)
    linkedObjectives: list[str] = Field(default_factory=list)
    available_after: str | None = None
    due_before: str | None = None


# ============== Tool arguments ==============

class ToolArguments(BaseModel):
    """Base for tool argument models. Unknown keys are ignored."""

    model_config = ConfigDict(extra="ignore")


class ObjectiveCreate(ToolArguments):
    title: str = Field(min_length=1)
    description: str | None = None
    urgency: Score | None = None
    deadline: str | None = None
    impact: Impact | None = None


class DeliverableCreate(ToolArguments):
    title: str = Field(min_length=1)
    objectiveId: str = Field(min_length=1)
    description: str | None = None
    feasibility: Score | None = None
    complexity: Complexity | None = None
    relationship: str | None = None
    available_after: str | None = None
    due_before: str | None = None


class EntityUpdate(ToolArguments):
    """Partial update. Fields left as None are absent.

    Fields listed in ``apply_when_defined`` are merged whenever they are not
    None (0 is a valid score); every other field is merged only when truthy.
    """

    apply_when_defined: ClassVar[frozenset[str]] = frozenset()

    id: str = Field(min_length=1)

    def supplied_fields(self) -> dict[str, Any]:
        """Fields that should be merged over the existing record."""
        supplied = {}
        for field, value in self.model_dump(exclude={"id"}).items():
            if field in self.apply_when_defined:
                if value is not None:
                    supplied[field] = value
            elif value:
                supplied[field] = value
        return supplied


class ObjectiveUpdate(EntityUpdate):
    apply_when_defined: ClassVar[frozenset[str]] = frozenset({"urgency"})

    title: str | None = None
    description: str | None = None
    urgency: Score | None = None
    deadline: str | None = None
    impact: Impact | None = None


class DeliverableUpdate(EntityUpdate):
    apply_when_defined: ClassVar[frozenset[str]] = frozenset({"feasibility"})

    title: str | None = None
    description: str | None = None
    feasibility: Score | None = None
    complexity: Complexity | None = None
    available_after: str | None = None
    due_before: str | None = None


class DeleteArguments(ToolArguments):
    id: str = Field(min_length=1)


class ReplaceArguments(ToolArguments):
    data: dict[str, Any]


# ============== Identity ==============

class Identity(BaseModel):
    """Resolved caller: who they are and how to read their blob."""

    user_id: str
    encryption_enabled: bool = False
    passphrase: str | None = Field(default=None, repr=False)


class Account(BaseModel):
    """Server-side account record. Never holds the passphrase itself."""

    user_id: str
    api_key: str
    encryption_enabled: bool = False
    passphrase_hash: str | None = Field(default=None, repr=False)


# ============== Tool outcomes ==============

class ToolOutcome(BaseModel):
    """Result of one dispatched tool call, before transport formatting."""

    tool: str
    data: dict[str, Any]
    created: dict[str, Any] | None = None
    updated: dict[str, Any] | None = None
    deleted: str | None = None
