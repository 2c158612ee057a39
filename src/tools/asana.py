"""Asana tools: list, read, create and complete tasks."""

from __future__ import annotations

from typing import Any

from src.services.asana_client import AsanaClient
from src.services.http_client import ProviderAPIError
from src.services.providers import Provider
from src.tools.capabilities import Integration
from src.tools.registry import (
    ToolContext,
    ToolDefinition,
    ToolName,
    ToolResult,
    clamp_limit,
    not_connected,
    provider_failure,
    truncate,
)

LABEL = "Asana"
MAX_LIMIT = 100
MAX_NOTES_CHARS = 500


LIST_ASANA_TASKS = ToolDefinition(
    name=ToolName.LIST_ASANA_TASKS,
    integration=Integration.ASANA,
    description=(
        "List tasks from the user's Asana account. Can filter by project or "
        "completion status."
    ),
    input_schema={
        "type": "object",
        "properties": {
            "projectId": {"type": "string", "description": "Filter by project ID (optional)"},
            "completed": {
                "type": "boolean",
                "description": "Include completed tasks. Defaults to incomplete tasks only.",
            },
            "limit": {
                "type": "number",
                "description": "Maximum number of tasks to return (default: 20, max: 100)",
            },
        },
        "required": [],
    },
)

GET_ASANA_TASK = ToolDefinition(
    name=ToolName.GET_ASANA_TASK,
    integration=Integration.ASANA,
    description="Get detailed information about a specific Asana task by its ID.",
    input_schema={
        "type": "object",
        "properties": {
            "taskId": {"type": "string", "description": "The Asana task GID"},
        },
        "required": ["taskId"],
    },
)

CREATE_ASANA_TASK = ToolDefinition(
    name=ToolName.CREATE_ASANA_TASK,
    integration=Integration.ASANA,
    description=(
        "Create a new task in Asana. Requires a task name; optionally a project, "
        "due date and description."
    ),
    input_schema={
        "type": "object",
        "properties": {
            "name": {"type": "string", "description": "Task name"},
            "notes": {"type": "string", "description": "Task description (optional)"},
            "dueDate": {"type": "string", "description": "Due date as YYYY-MM-DD (optional)"},
            "projectId": {"type": "string", "description": "Project GID (optional)"},
        },
        "required": ["name"],
    },
)

COMPLETE_ASANA_TASK = ToolDefinition(
    name=ToolName.COMPLETE_ASANA_TASK,
    integration=Integration.ASANA,
    description="Mark an Asana task as complete.",
    input_schema={
        "type": "object",
        "properties": {
            "taskId": {"type": "string", "description": "The Asana task GID to complete"},
        },
        "required": ["taskId"],
    },
)


def _projects(task: dict[str, Any]) -> list[dict[str, Any]] | None:
    projects = task.get("projects")
    if projects is None:
        return None
    return [{"id": p.get("gid"), "name": p.get("name")} for p in projects]


async def _client(ctx: ToolContext) -> AsanaClient | None:
    token = await ctx.access_token(Provider.ASANA)
    return AsanaClient(ctx.http, token) if token else None


async def list_asana_tasks(ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
    client = await _client(ctx)
    if client is None:
        return not_connected(LABEL)

    limit = clamp_limit(args.get("limit"), default=20, maximum=MAX_LIMIT)
    try:
        workspace = await client.default_workspace()
        tasks = await client.list_tasks(
            workspace_gid=workspace["gid"],
            project_gid=args.get("projectId"),
            completed=bool(args.get("completed", False)),
            limit=limit,
        )
    except ProviderAPIError as exc:
        return provider_failure(exc, label=LABEL, action="retrieve tasks from Asana")

    summaries = [
        {
            "id": t.get("gid"),
            "name": t.get("name"),
            "notes": truncate(t.get("notes"), MAX_NOTES_CHARS),
            "completed": t.get("completed"),
            "dueDate": t.get("due_on") or t.get("due_at"),
            "assignee": (t.get("assignee") or {}).get("name"),
            "projects": _projects(t),
            "link": t.get("permalink_url"),
        }
        for t in tasks
    ]
    return ToolResult.ok({
        "tasks": summaries,
        "total": len(summaries),
        "workspace": workspace.get("name"),
    })


async def get_asana_task(ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
    client = await _client(ctx)
    if client is None:
        return not_connected(LABEL)

    try:
        task = await client.get_task(args["taskId"])
    except ProviderAPIError as exc:
        return provider_failure(
            exc, label=LABEL, action="retrieve task", not_found="Task not found",
        )

    assignee = task.get("assignee")
    return ToolResult.ok({
        "id": task.get("gid"),
        "name": task.get("name"),
        "notes": task.get("notes"),
        "completed": task.get("completed"),
        "completedAt": task.get("completed_at"),
        "dueDate": task.get("due_on") or task.get("due_at"),
        "createdAt": task.get("created_at"),
        "modifiedAt": task.get("modified_at"),
        "assignee": (
            {"name": assignee.get("name"), "email": assignee.get("email")} if assignee else None
        ),
        "projects": _projects(task),
        "tags": [{"id": t.get("gid"), "name": t.get("name")} for t in task.get("tags") or []],
        "workspace": (task.get("workspace") or {}).get("name"),
        "link": task.get("permalink_url"),
    })


async def create_asana_task(ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
    client = await _client(ctx)
    if client is None:
        return not_connected(LABEL)

    try:
        workspace = await client.default_workspace()
        task = await client.create_task(
            workspace_gid=workspace["gid"],
            name=args["name"],
            notes=args.get("notes"),
            due_on=args.get("dueDate"),
            project_gid=args.get("projectId"),
        )
    except ProviderAPIError as exc:
        return provider_failure(exc, label=LABEL, action="create task in Asana")

    return ToolResult.ok({
        "id": task.get("gid"),
        "name": task.get("name"),
        "dueDate": task.get("due_on"),
        "link": task.get("permalink_url"),
        "message": f'Task "{args["name"]}" created successfully',
    })


async def complete_asana_task(ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
    client = await _client(ctx)
    if client is None:
        return not_connected(LABEL)

    try:
        task = await client.complete_task(args["taskId"])
    except ProviderAPIError as exc:
        return provider_failure(
            exc, label=LABEL, action="complete task", not_found="Task not found",
        )

    return ToolResult.ok({
        "id": task.get("gid"),
        "name": task.get("name"),
        "completed": task.get("completed"),
        "completedAt": task.get("completed_at"),
        "message": f'Task "{task.get("name")}" marked as complete',
    })


TOOLS = [
    (LIST_ASANA_TASKS, list_asana_tasks),
    (GET_ASANA_TASK, get_asana_task),
    (CREATE_ASANA_TASK, create_asana_task),
    (COMPLETE_ASANA_TASK, complete_asana_task),
]
