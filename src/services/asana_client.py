"""Asana REST API 1.0 client.

Asana wraps every payload in ``{"data": ...}``; the methods here unwrap
it so callers work with the task or user object directly.
"""

from __future__ import annotations

from typing import Any
from urllib.parse import quote

from src.services.http_client import ProviderAPIError, ProviderClient

_LIST_FIELDS = (
    "name,completed,due_on,due_at,assignee,assignee.name,"
    "projects,projects.name,notes,permalink_url"
)
_DETAIL_FIELDS = (
    "name,notes,completed,completed_at,due_on,due_at,created_at,modified_at,"
    "assignee,assignee.name,assignee.email,projects,projects.name,tags,tags.name,"
    "workspace,workspace.name,permalink_url"
)


class AsanaClient(ProviderClient):
    service = "asana"
    base_url = "https://app.asana.com/api/1.0"

    async def _data(self, method: str, path: str, **kwargs: Any) -> Any:
        body = await self._request(method, path, **kwargs)
        return (body or {}).get("data")

    async def get_me(self) -> dict[str, Any]:
        return await self._data("GET", "/users/me")

    async def default_workspace(self) -> dict[str, Any]:
        """The first workspace of the authenticated user."""
        workspaces = (await self.get_me() or {}).get("workspaces") or []
        if not workspaces:
            raise ProviderAPIError("No Asana workspace found for this user")
        return workspaces[0]

    async def list_tasks(
        self,
        *,
        workspace_gid: str,
        project_gid: str | None,
        completed: bool,
        limit: int,
    ) -> list[dict[str, Any]]:
        """Tasks in a project, or the user's own tasks in the workspace.

        Without *completed*, only incomplete tasks are returned.
        """
        params: dict[str, Any] = {
            "limit": limit,
            "opt_fields": _LIST_FIELDS,
            "completed_since": "1970-01-01T00:00:00.000Z" if completed else "now",
        }
        if project_gid:
            path = f"/projects/{quote(project_gid, safe='')}/tasks"
        else:
            path = "/tasks"
            params.update(workspace=workspace_gid, assignee="me")
        return await self._data("GET", path, params=params) or []

    async def get_task(self, task_gid: str) -> dict[str, Any]:
        return await self._data(
            "GET", f"/tasks/{quote(task_gid, safe='')}", params={"opt_fields": _DETAIL_FIELDS},
        )

    async def create_task(
        self,
        *,
        workspace_gid: str,
        name: str,
        notes: str | None = None,
        due_on: str | None = None,
        project_gid: str | None = None,
    ) -> dict[str, Any]:
        task: dict[str, Any] = {"name": name, "workspace": workspace_gid, "assignee": "me"}
        if notes:
            task["notes"] = notes
        if due_on:
            task["due_on"] = due_on
        if project_gid:
            task["projects"] = [project_gid]
        return await self._data("POST", "/tasks", json_body={"data": task})

    async def complete_task(self, task_gid: str) -> dict[str, Any]:
        return await self._data(
            "PUT", f"/tasks/{quote(task_gid, safe='')}", json_body={"data": {"completed": True}},
        )
