"""
MCP Tools module for Cosimo MCP Server.

Contains the static tool catalog and the ToolDispatcher, which runs one
load -> decrypt -> mutate -> encrypt -> store cycle per tool call and
formats the outcome for either transport.
"""

from typing import Any

import anyio
import anyio.to_thread
import structlog
from mcp.types import CallToolResult, TextContent, Tool
from pydantic import ValidationError

from .codec import dump_graph, load_graph
from .config import settings
from .graph import (
    add_deliverable,
    add_objective,
    delete_item,
    get_graph,
    replace_graph,
    update_deliverable,
    update_objective,
)
from .models import (
    DeleteArguments,
    DeliverableCreate,
    DeliverableUpdate,
    Identity,
    ObjectiveCreate,
    ObjectiveUpdate,
    ReplaceArguments,
    ToolArguments,
    ToolOutcome,
)
from .store import BlobStore
from .utils import (
    AuthenticationError,
    Clock,
    CosimoError,
    DecryptionFailed,
    InvalidArguments,
    InvalidPassphrase,
    NotFound,
    PassphraseRequired,
    UnknownTool,
    pretty_json,
    utc_now,
)

logger = structlog.get_logger(__name__)

TOOL_GET = "cosimo_get"
TOOL_SET = "cosimo_set"
TOOL_ADD_OBJECTIVE = "cosimo_add_objective"
TOOL_ADD_DELIVERABLE = "cosimo_add_deliverable"
TOOL_UPDATE_OBJECTIVE = "cosimo_update_objective"
TOOL_UPDATE_DELIVERABLE = "cosimo_update_deliverable"
TOOL_DELETE = "cosimo_delete"

ARGUMENT_MODELS: dict[str, type[ToolArguments] | None] = {
    TOOL_GET: None,
    TOOL_SET: ReplaceArguments,
    TOOL_ADD_OBJECTIVE: ObjectiveCreate,
    TOOL_ADD_DELIVERABLE: DeliverableCreate,
    TOOL_UPDATE_OBJECTIVE: ObjectiveUpdate,
    TOOL_UPDATE_DELIVERABLE: DeliverableUpdate,
    TOOL_DELETE: DeleteArguments,
}

TOOLS = [
    Tool(
        name=TOOL_GET,
        description="Get all objectives and deliverables with their relationships",
        inputSchema={"type": "object", "properties": {}, "required": []},
    ),
    Tool(
        name=TOOL_SET,
        description="Replace entire data (objectives, deliverables, relationships)",
        inputSchema={
            "type": "object",
            "properties": {
                "data": {
                    "type": "object",
                    "description": "Full data object with objectives, deliverables, relationships arrays/objects"
                }
            },
            "required": ["data"]
        },
    ),
    Tool(
        name=TOOL_ADD_OBJECTIVE,
        description="Add a new objective (goal). Returns the new objective with generated ID.",
        inputSchema={
            "type": "object",
            "properties": {
                "title": {"type": "string"},
                "description": {"type": "string"},
                "urgency": {"type": "number", "minimum": 0, "maximum": 100, "description": "Higher = more urgent"},
                "deadline": {"type": "string", "format": "date"},
                "impact": {"type": "string", "enum": ["low", "medium", "high", "critical"]}
            },
            "required": ["title"]
        },
    ),
    Tool(
        name=TOOL_ADD_DELIVERABLE,
        description="Add a new deliverable (action) and link it to an objective",
        inputSchema={
            "type": "object",
            "properties": {
                "title": {"type": "string"},
                "description": {"type": "string"},
                "feasibility": {"type": "number", "minimum": 0, "maximum": 100, "description": "Higher = easier to do"},
                "complexity": {"type": "string", "enum": ["low", "medium", "high"]},
                "objectiveId": {"type": "string", "description": "ID of objective to link (e.g., obj-1)"},
                "relationship": {"type": "string", "description": "Semantic bridge: how this action achieves the goal"},
                "available_after": {"type": "string", "format": "date", "description": "Date when this becomes actionable (ISO format)"},
                "due_before": {"type": "string", "format": "date", "description": "Hard deadline for this action (ISO format)"}
            },
            "required": ["title", "objectiveId"]
        },
    ),
    Tool(
        name=TOOL_UPDATE_OBJECTIVE,
        description="Update an existing objective",
        inputSchema={
            "type": "object",
            "properties": {
                "id": {"type": "string", "description": "Objective ID (e.g., obj-1)"},
                "title": {"type": "string"},
                "description": {"type": "string"},
                "urgency": {"type": "number", "minimum": 0, "maximum": 100},
                "deadline": {"type": "string", "format": "date"},
                "impact": {"type": "string", "enum": ["low", "medium", "high", "critical"]}
            },
            "required": ["id"]
        },
    ),
    Tool(
        name=TOOL_UPDATE_DELIVERABLE,
        description="Update an existing deliverable",
        inputSchema={
            "type": "object",
            "properties": {
                "id": {"type": "string", "description": "Deliverable ID (e.g., del-1)"},
                "title": {"type": "string"},
                "description": {"type": "string"},
                "feasibility": {"type": "number", "minimum": 0, "maximum": 100},
                "complexity": {"type": "string", "enum": ["low", "medium", "high"]},
                "available_after": {"type": "string", "format": "date", "description": "Date when this becomes actionable"},
                "due_before": {"type": "string", "format": "date", "description": "Hard deadline for this action"}
            },
            "required": ["id"]
        },
    ),
    Tool(
        name=TOOL_DELETE,
        description="Delete an objective or deliverable by ID",
        inputSchema={
            "type": "object",
            "properties": {
                "id": {"type": "string", "description": "ID to delete (e.g., obj-1 or del-2)"}
            },
            "required": ["id"]
        },
    ),
]

INSTRUCTIONS = """You are helping the user manage their goals in Cosimo, a system that bridges high-level objectives with concrete deliverables.

## Authentication

This MCP server requires an API key (x-api-key header). If the user has enabled end-to-end encryption, also provide the passphrase (x-passphrase header); it decrypts the data and is never stored on the server.

## Core Concepts

**Objectives** = "What it does": user-facing goals ranked by urgency (0-100), with an optional `deadline` (ISO date).

**Deliverables** = "How it works": concrete actions ranked by feasibility (0-100, higher = easier), with optional `available_after` and `due_before` dates.

**Relationships** = semantic bridges explaining HOW a deliverable achieves an objective. Key format: "obj-X:del-Y". Explain the causal connection, do not restate the titles.

## When the user asks to add/update goals

1. Call cosimo_get to see the current state
2. Decide whether it is an objective (outcome) or a deliverable (action)
3. Always link deliverables to a relevant objective
4. Write meaningful relationship descriptions
5. Set urgency/feasibility from context and ask about timing (deadlines, start dates)

## Scoring Guidelines

Urgency: 90-100 due this week, 70-89 this month, 50-69 this quarter, <50 someday.
Feasibility: 90-100 can do today, 70-89 this week, 50-69 needs coordination, <50 blocked or complex."""


def tool_catalog() -> list[dict[str, Any]]:
    """Tool definitions as JSON-RPC payloads."""
    return [tool.model_dump(by_alias=True, exclude_none=True) for tool in TOOLS]


def manifest() -> dict[str, Any]:
    """Manifest document for the HTTP execute endpoint."""
    return {
        "name": settings.server_name,
        "version": settings.server_version,
        "description": 'Goal alignment system - bridge objectives ("what it does") and deliverables ("how it works")',
        "instructions": INSTRUCTIONS,
        "tools": [
            {"name": tool.name, "description": tool.description, "parameters": tool.inputSchema}
            for tool in TOOLS
        ],
    }


def _describe_validation_error(error: ValidationError) -> str:
    parts = []
    for detail in error.errors():
        location = ".".join(str(part) for part in detail["loc"])
        parts.append(f"{location}: {detail['msg']}" if location else detail["msg"])
    return "; ".join(parts)


def parse_arguments(name: str, arguments: Any) -> ToolArguments | None:
    """Validate raw tool arguments against the tool's argument model.

    Raises:
        UnknownTool: the name is not in the catalog.
        InvalidArguments: the arguments do not validate.
    """
    if name not in ARGUMENT_MODELS:
        raise UnknownTool(f"Unknown tool: {name}")

    model = ARGUMENT_MODELS[name]
    if model is None:
        return None
    try:
        return model.model_validate(arguments if arguments is not None else {})
    except ValidationError as e:
        raise InvalidArguments(_describe_validation_error(e)) from None


def apply_tool(name: str, graph: dict[str, Any], args: ToolArguments | None, now: str) -> ToolOutcome:
    """Run the graph operation behind a tool."""
    if name == TOOL_GET:
        return ToolOutcome(tool=name, data=get_graph(graph))

    elif name == TOOL_SET:
        return ToolOutcome(tool=name, data=replace_graph(args.data, now))

    elif name == TOOL_ADD_OBJECTIVE:
        graph, objective = add_objective(graph, args, now)
        return ToolOutcome(tool=name, data=graph, created=objective)

    elif name == TOOL_ADD_DELIVERABLE:
        graph, deliverable = add_deliverable(graph, args, now)
        return ToolOutcome(tool=name, data=graph, created=deliverable)

    elif name == TOOL_UPDATE_OBJECTIVE:
        graph, objective = update_objective(graph, args, now)
        return ToolOutcome(tool=name, data=graph, updated=objective)

    elif name == TOOL_UPDATE_DELIVERABLE:
        graph, deliverable = update_deliverable(graph, args, now)
        return ToolOutcome(tool=name, data=graph, updated=deliverable)

    elif name == TOOL_DELETE:
        return ToolOutcome(tool=name, data=delete_item(graph, args.id, now), deleted=args.id)

    raise UnknownTool(f"Unknown tool: {name}")


def format_outcome(outcome: ToolOutcome) -> str:
    """Human-readable text for the MCP content view."""
    if outcome.tool == TOOL_ADD_OBJECTIVE:
        return f"Created objective: {pretty_json(outcome.created)}"
    if outcome.tool == TOOL_ADD_DELIVERABLE:
        return f"Created deliverable: {pretty_json(outcome.created)}"
    if outcome.tool == TOOL_UPDATE_OBJECTIVE:
        return f"Updated objective: {pretty_json(outcome.updated)}"
    if outcome.tool == TOOL_UPDATE_DELIVERABLE:
        return f"Updated deliverable: {pretty_json(outcome.updated)}"
    if outcome.tool == TOOL_DELETE:
        return f"Deleted {outcome.deleted}"
    return pretty_json(outcome.data)


# HTTP status per error code for the execute view
ERROR_STATUS = {
    InvalidArguments.code: 400,
    UnknownTool.code: 400,
    NotFound.code: 404,
    PassphraseRequired.code: 401,
    InvalidPassphrase.code: 401,
    AuthenticationError.code: 401,
}


class ToolDispatcher:
    """Runs tool calls against one user's blob at a time."""

    def __init__(self, store: BlobStore, clock: Clock = utc_now):
        self.store = store
        self.clock = clock

    async def run(self, name: str, arguments: Any, identity: Identity) -> ToolOutcome:
        """Execute one full load -> mutate -> store cycle.

        The cycle is shielded from cancellation: once the blob has been read,
        the write completes even if the caller's connection goes away.

        Raises:
            CosimoError: any tool-level failure.
        """
        args = parse_arguments(name, arguments)

        with anyio.CancelScope(shield=True):
            async with self.store.lock(identity.user_id):
                raw = await self.store.get_blob(identity.user_id)
                try:
                    graph = await anyio.to_thread.run_sync(
                        load_graph, raw, identity.encryption_enabled, identity.passphrase
                    )
                except DecryptionFailed:
                    logger.warning("blob_undecryptable", user_id=identity.user_id)
                    raise

                outcome = apply_tool(name, graph, args, self.clock())

                if name != TOOL_GET:
                    encoded = await anyio.to_thread.run_sync(
                        dump_graph, outcome.data, identity.encryption_enabled, identity.passphrase
                    )
                    await self.store.put_blob(identity.user_id, encoded)

        logger.info("tool_called", tool=name, user_id=identity.user_id)
        return outcome

    async def call_tool(self, name: str, arguments: Any, identity: Identity) -> CallToolResult:
        """MCP view: text content, with isError set on tool-level failure."""
        try:
            outcome = await self.run(name, arguments, identity)
        except CosimoError as e:
            logger.info("tool_call_failed", tool=name, code=e.code, error=str(e))
            return CallToolResult(content=[TextContent(type="text", text=f"Error: {e}")], isError=True)

        return CallToolResult(content=[TextContent(type="text", text=format_outcome(outcome))])

    async def execute(self, name: str, arguments: Any, identity: Identity) -> tuple[int, dict[str, Any]]:
        """HTTP view: (status, {success, data, created?}) or (status, {error, code})."""
        try:
            outcome = await self.run(name, arguments, identity)
        except CosimoError as e:
            logger.info("tool_call_failed", tool=name, code=e.code, error=str(e))
            return ERROR_STATUS.get(e.code, 500), {"error": str(e), "code": e.code}

        body: dict[str, Any] = {"success": True, "data": outcome.data}
        if outcome.created is not None:
            body["created"] = outcome.created
        return 200, body
