"""
Graph mutation functions for Cosimo MCP Server.

Pure, synchronous operations over an in-memory Graph dict:

    {"objectives": [...], "deliverables": [...],
     "relationships": {"obj-1:del-1": "..."}, "lastUpdated": "..."}

Every mutating operation stamps ``lastUpdated`` with the ``now`` it is given.
Link arrays record whether an edge exists; the relationships map holds the
text explaining it.
"""

from typing import Any

from .codec import ensure_shape
from .models import (
    Deliverable,
    DeliverableCreate,
    DeliverableUpdate,
    Objective,
    ObjectiveCreate,
    ObjectiveUpdate,
)
from .utils import DELIVERABLE_PREFIX, OBJECTIVE_PREFIX, NotFound, id_suffix, relationship_key


def next_id(items: list[dict[str, Any]], prefix: str) -> str:
    """Allocate the next id in a collection: max numeric suffix + 1.

    Malformed ids count as 0, so allocation stays monotonic even after a
    replace introduced foreign-looking ids.
    """
    highest = max((id_suffix(item.get("id")) for item in items if isinstance(item, dict)), default=0)
    return f"{prefix}{max(highest, 0) + 1}"


def _find(items: list[dict[str, Any]], item_id: str) -> dict[str, Any] | None:
    for item in items:
        if isinstance(item, dict) and item.get("id") == item_id:
            return item
    return None


def get_graph(graph: dict[str, Any]) -> dict[str, Any]:
    """Return the graph unchanged."""
    return graph


def replace_graph(document: dict[str, Any], now: str) -> dict[str, Any]:
    """Overwrite the graph wholesale. Any shape is accepted."""
    graph = dict(document)
    graph["lastUpdated"] = now
    return graph


def add_objective(graph: dict[str, Any], fields: ObjectiveCreate, now: str) -> tuple[dict[str, Any], dict[str, Any]]:
    """Append a new objective. Returns (graph, created objective)."""
    ensure_shape(graph)
    objective = Objective(
        id=next_id(graph["objectives"], OBJECTIVE_PREFIX),
        title=fields.title,
        description=fields.description or "",
        urgency=50 if fields.urgency is None else fields.urgency,
        deadline=fields.deadline or "",
        impact=fields.impact or "medium",
    ).model_dump()

    graph["objectives"].append(objective)
    graph["lastUpdated"] = now
    return graph, objective


def add_deliverable(graph: dict[str, Any], fields: DeliverableCreate, now: str) -> tuple[dict[str, Any], dict[str, Any]]:
    """Append a new deliverable linked to an objective.

    A dangling objectiveId is tolerated: the forward link is kept and the
    back-link is skipped.
    """
    ensure_shape(graph)
    deliverable = Deliverable(
        id=next_id(graph["deliverables"], DELIVERABLE_PREFIX),
        title=fields.title,
        description=fields.description or "",
        feasibility=50 if fields.feasibility is None else fields.feasibility,
        complexity=fields.complexity or "medium",
        linkedObjectives=[fields.objectiveId],
        available_after=fields.available_after or None,
        due_before=fields.due_before or None,
    ).model_dump(exclude_none=True)

    graph["deliverables"].append(deliverable)

    objective = _find(graph["objectives"], fields.objectiveId)
    if objective is not None:
        # A replaced graph may carry null or a non-list here
        if not isinstance(objective.get("linkedDeliverables"), list):
            objective["linkedDeliverables"] = []
        objective["linkedDeliverables"].append(deliverable["id"])

    if fields.relationship:
        graph["relationships"][relationship_key(fields.objectiveId, deliverable["id"])] = fields.relationship

    graph["lastUpdated"] = now
    return graph, deliverable


def update_objective(graph: dict[str, Any], fields: ObjectiveUpdate, now: str) -> tuple[dict[str, Any], dict[str, Any]]:
    """Merge supplied fields over an existing objective.

    Raises:
        NotFound: no objective has the given id.
    """
    ensure_shape(graph)
    objective = _find(graph["objectives"], fields.id)
    if objective is None:
        raise NotFound("Objective not found")

    objective.update(fields.supplied_fields())
    graph["lastUpdated"] = now
    return graph, objective


def update_deliverable(graph: dict[str, Any], fields: DeliverableUpdate, now: str) -> tuple[dict[str, Any], dict[str, Any]]:
    """Merge supplied fields over an existing deliverable.

    Raises:
        NotFound: no deliverable has the given id.
    """
    ensure_shape(graph)
    deliverable = _find(graph["deliverables"], fields.id)
    if deliverable is None:
        raise NotFound("Deliverable not found")

    deliverable.update(fields.supplied_fields())
    graph["lastUpdated"] = now
    return graph, deliverable


def delete_item(graph: dict[str, Any], item_id: str, now: str) -> dict[str, Any]:
    """Delete an objective or deliverable and everything that references it.

    Ids with any other prefix leave the graph untouched apart from the
    timestamp.
    """
    ensure_shape(graph)

    if item_id.startswith(OBJECTIVE_PREFIX):
        graph["objectives"] = [o for o in graph["objectives"] if not (isinstance(o, dict) and o.get("id") == item_id)]
        for deliverable in graph["deliverables"]:
            if isinstance(deliverable, dict) and isinstance(deliverable.get("linkedObjectives"), list):
                deliverable["linkedObjectives"] = [oid for oid in deliverable["linkedObjectives"] if oid != item_id]
        stale = [key for key in graph["relationships"] if key.startswith(f"{item_id}:")]

    elif item_id.startswith(DELIVERABLE_PREFIX):
        graph["deliverables"] = [d for d in graph["deliverables"] if not (isinstance(d, dict) and d.get("id") == item_id)]
        for objective in graph["objectives"]:
            if isinstance(objective, dict) and isinstance(objective.get("linkedDeliverables"), list):
                objective["linkedDeliverables"] = [did for did in objective["linkedDeliverables"] if did != item_id]
        stale = [key for key in graph["relationships"] if key.endswith(f":{item_id}")]

    else:
        stale = []

    for key in stale:
        del graph["relationships"][key]

    graph["lastUpdated"] = now
    return graph
