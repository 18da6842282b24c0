"""
Agent Tools: the drive operation catalogue available to agent loops.
Each function has type hints and a docstring; both feed the tool schema
the model sees. The leading `user_id` argument is injected by the
registry and never exposed to the model.

Tool categories:
  - Files: list/info/read/write/create/rename/move/trash/restore/delete/star, download url
  - Folders: list contents, create/rename/move/trash/restore/delete/star, path
  - Documents: patch_file
  - Sharing: share links, share with users, permissions, shared with me
  - Search: name search, semantic search, workspace knowledge, directory summary, indexing

Every tool is executed by the storage service; this module only describes
the catalogue and forwards calls.
"""

import asyncio
import inspect
import logging
import re
from dataclasses import dataclass
from typing import Optional

import httpx

from config import (
    AGENT_TOOL_FILTER, STORAGE_API_KEY, STORAGE_ENDPOINT, STORAGE_TIMEOUT,
)

logger = logging.getLogger(__name__)


@dataclass
class ToolResult:
    """Outcome of a tool call. Failures are data the agent reads, not exceptions."""
    content: str
    is_error: bool = False


class StorageToolClient:
    """Executes catalogue tools against the storage service over HTTP.

    POST {endpoint}/internal/agent/tools/{name} with {"userId", "args"};
    the service answers {"content": str, "isError": bool}.
    """

    def __init__(self, endpoint: str = STORAGE_ENDPOINT, api_key: str = STORAGE_API_KEY,
                 timeout: float = STORAGE_TIMEOUT, transport: httpx.AsyncBaseTransport = None):
        self.endpoint = endpoint.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    async def call(self, name: str, user_id: str, args: dict) -> ToolResult:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["X-Internal-Key"] = self.api_key
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(
                    f"{self.endpoint}/internal/agent/tools/{name}",
                    json={"userId": user_id, "args": args},
                    headers=headers,
                )
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPStatusError as e:
            logger.warning("Storage tool %s failed: HTTP %s", name, e.response.status_code)
            return ToolResult(f"Error: {name} failed with status {e.response.status_code}", True)
        except httpx.HTTPError as e:
            logger.warning("Storage service unreachable for %s: %s", name, e)
            return ToolResult(f"Error: storage service unavailable ({e})", True)
        except ValueError:
            return ToolResult(f"Error: {name} returned an invalid response", True)

        return ToolResult(str(data.get("content", "")), bool(data.get("isError", False)))


_client: Optional[StorageToolClient] = None


def set_storage_client(client: StorageToolClient):
    """Swap the client used by every catalogue tool."""
    global _client
    _client = client


def get_storage_client() -> StorageToolClient:
    global _client
    if _client is None:
        _client = StorageToolClient()
    return _client


async def _storage_call(name: str, user_id: str, **args) -> ToolResult:
    """Forward a tool call, dropping arguments the model left unset."""
    payload = {k: v for k, v in args.items() if v is not None}
    return await get_storage_client().call(name, user_id, payload)


# ── Files ──

async def list_files(user_id: str, filter: str = None, limit: int = None) -> ToolResult:
    """List the user's files, optionally filtered.

    Args:
        filter: One of all, starred, recent, trashed (default all).
        limit: Maximum number of files to return (default 50).
    """
    return await _storage_call("list_files", user_id, filter=filter, limit=limit)


async def get_file_info(user_id: str, fileId: str) -> ToolResult:
    """Get metadata for a file: name, size, type, folder, dates, star state.

    Args:
        fileId: The file ID to get information for.
    """
    return await _storage_call("get_file_info", user_id, fileId=fileId)


async def read_file(user_id: str, fileId: str) -> ToolResult:
    """Read the text content of a file. Only text-based files are supported.

    Args:
        fileId: The file ID to read.
    """
    return await _storage_call("read_file", user_id, fileId=fileId)


async def write_file(user_id: str, fileId: str, content: str) -> ToolResult:
    """Overwrite the whole text content of a file.

    Args:
        fileId: The file ID to write to.
        content: The new text content for the file.
    """
    return await _storage_call("write_file", user_id, fileId=fileId, content=content)


async def create_file(user_id: str, fileName: str, folderId: str = None,
                      content: str = None) -> ToolResult:
    """Create a new text file.

    Args:
        fileName: File name including extension, e.g. notes.md.
        folderId: Parent folder ID (omit for the root folder).
        content: Initial text content.
    """
    return await _storage_call("create_file", user_id, fileName=fileName,
                               folderId=folderId, content=content)


async def rename_file(user_id: str, fileId: str, newName: str) -> ToolResult:
    """Rename an existing file.

    Args:
        fileId: The file ID to rename.
        newName: The new name for the file.
    """
    return await _storage_call("rename_file", user_id, fileId=fileId, newName=newName)


async def move_file(user_id: str, fileId: str, destinationFolderId: str = None) -> ToolResult:
    """Move a file to a different folder.

    Args:
        fileId: The file ID to move.
        destinationFolderId: Target folder ID (omit to move to the root folder).
    """
    return await _storage_call("move_file", user_id, fileId=fileId,
                               destinationFolderId=destinationFolderId)


async def trash_file(user_id: str, fileId: str) -> ToolResult:
    """Move a file to the trash. The file can be restored later.

    Args:
        fileId: The file ID to trash.
    """
    return await _storage_call("trash_file", user_id, fileId=fileId)


async def restore_file(user_id: str, fileId: str) -> ToolResult:
    """Restore a file from the trash.

    Args:
        fileId: The file ID to restore.
    """
    return await _storage_call("restore_file", user_id, fileId=fileId)


async def delete_file(user_id: str, fileId: str) -> ToolResult:
    """Permanently delete a file. This action cannot be undone.

    Args:
        fileId: The file ID to permanently delete.
    """
    return await _storage_call("delete_file", user_id, fileId=fileId)


async def star_file(user_id: str, fileId: str, star: bool = None) -> ToolResult:
    """Star or unstar a file to mark it as important.

    Args:
        fileId: The file ID.
        star: True to star, false to unstar (default true).
    """
    return await _storage_call("star_file", user_id, fileId=fileId, star=star)


async def get_download_url(user_id: str, fileId: str) -> ToolResult:
    """Get a temporary download URL for a file.

    Args:
        fileId: The file ID to download.
    """
    return await _storage_call("get_download_url", user_id, fileId=fileId)


# ── Documents ──

async def patch_file(user_id: str, fileId: str, patches: list[dict]) -> ToolResult:
    """Edit a text file with precise patch operations instead of rewriting it.

    Each patch is an object with an `op` of replace, insert_after,
    insert_before, append, prepend or delete. replace takes search and
    replace; insert_after and insert_before take search and content;
    append and prepend take content; delete takes search.

    Args:
        fileId: The file ID to patch.
        patches: Ordered list of patch operations.
    """
    return await _storage_call("patch_file", user_id, fileId=fileId, patches=patches)


# ── Folders ──

async def list_folder_contents(user_id: str, folderId: str = None) -> ToolResult:
    """List the files and subfolders inside a folder.

    Args:
        folderId: The folder ID (omit for the root folder).
    """
    return await _storage_call("list_folder_contents", user_id, folderId=folderId)


async def create_folder(user_id: str, name: str, parentId: str = None) -> ToolResult:
    """Create a new folder inside a parent folder.

    Args:
        name: The name of the new folder.
        parentId: Parent folder ID (omit for the root folder).
    """
    return await _storage_call("create_folder", user_id, name=name, parentId=parentId)


async def rename_folder(user_id: str, folderId: str, newName: str) -> ToolResult:
    """Rename an existing folder.

    Args:
        folderId: The folder ID to rename.
        newName: The new name for the folder.
    """
    return await _storage_call("rename_folder", user_id, folderId=folderId, newName=newName)


async def move_folder(user_id: str, folderId: str, destinationId: str = None) -> ToolResult:
    """Move a folder to a different parent folder.

    Args:
        folderId: The folder ID to move.
        destinationId: Target parent folder ID (omit to move to the root folder).
    """
    return await _storage_call("move_folder", user_id, folderId=folderId,
                               destinationId=destinationId)


async def trash_folder(user_id: str, folderId: str) -> ToolResult:
    """Move a folder and its contents to the trash.

    Args:
        folderId: The folder ID to trash.
    """
    return await _storage_call("trash_folder", user_id, folderId=folderId)


async def restore_folder(user_id: str, folderId: str) -> ToolResult:
    """Restore a folder from the trash.

    Args:
        folderId: The folder ID to restore.
    """
    return await _storage_call("restore_folder", user_id, folderId=folderId)


async def delete_folder(user_id: str, folderId: str) -> ToolResult:
    """Permanently delete a folder and everything inside it. This cannot be undone.

    Args:
        folderId: The folder ID to permanently delete.
    """
    return await _storage_call("delete_folder", user_id, folderId=folderId)


async def get_folder_path(user_id: str, folderId: str) -> ToolResult:
    """Get the breadcrumb path from the root folder down to a folder.

    Args:
        folderId: The folder ID to get the path for.
    """
    return await _storage_call("get_folder_path", user_id, folderId=folderId)


async def star_folder(user_id: str, folderId: str, star: bool = None) -> ToolResult:
    """Star or unstar a folder.

    Args:
        folderId: The folder ID.
        star: True to star, false to unstar (default true).
    """
    return await _storage_call("star_folder", user_id, folderId=folderId, star=star)


# ── Sharing ──

async def create_share_link(user_id: str, resourceId: str, resourceType: str = None,
                            role: str = None, password: str = None,
                            expiresAt: str = None) -> ToolResult:
    """Create a public share link for a file or folder.

    Args:
        resourceId: The file or folder ID to share.
        resourceType: file or folder (default file).
        role: viewer or editor (default viewer).
        password: Optional password protecting the link.
        expiresAt: Optional ISO-8601 expiry time.
    """
    return await _storage_call("create_share_link", user_id, resourceId=resourceId,
                               resourceType=resourceType, role=role,
                               password=password, expiresAt=expiresAt)


async def list_share_links(user_id: str, resourceId: str, resourceType: str = None) -> ToolResult:
    """List all share links for a specific resource.

    Args:
        resourceId: The file or folder ID.
        resourceType: file or folder (default file).
    """
    return await _storage_call("list_share_links", user_id, resourceId=resourceId,
                               resourceType=resourceType)


async def revoke_share_link(user_id: str, linkId: str) -> ToolResult:
    """Revoke (disable) an existing share link.

    Args:
        linkId: The share link ID to revoke.
    """
    return await _storage_call("revoke_share_link", user_id, linkId=linkId)


async def share_with_users(user_id: str, resourceId: str, emails: list[str],
                           role: str = None, resourceType: str = None) -> ToolResult:
    """Share a file or folder with specific users by email.

    Args:
        resourceId: The file or folder ID to share.
        emails: Email addresses to share with.
        role: viewer or editor (default viewer).
        resourceType: file or folder (default file).
    """
    return await _storage_call("share_with_users", user_id, resourceId=resourceId,
                               emails=emails, role=role, resourceType=resourceType)


async def get_permissions(user_id: str, resourceId: str, resourceType: str = None) -> ToolResult:
    """List who has access to a file or folder and with which role.

    Args:
        resourceId: The file or folder ID.
        resourceType: file or folder (default file).
    """
    return await _storage_call("get_permissions", user_id, resourceId=resourceId,
                               resourceType=resourceType)


async def list_shared_with_me(user_id: str, resourceType: str = None) -> ToolResult:
    """List resources that have been shared with the user.

    Args:
        resourceType: file, folder or all (default all).
    """
    return await _storage_call("list_shared_with_me", user_id, resourceType=resourceType)


# ── Search & Knowledge ──

async def search_files(user_id: str, query: str, fileType: str = None) -> ToolResult:
    """Search files by name or extension.

    Args:
        query: Text to match against file names.
        fileType: Optional extension filter such as pdf or md.
    """
    return await _storage_call("search_files", user_id, query=query, fileType=fileType)


async def semantic_search_files(user_id: str, query: str, limit: int = None) -> ToolResult:
    """Search indexed files by meaning rather than by name.

    Args:
        query: Natural-language description of the content to find.
        limit: Maximum number of matches (default 10).
    """
    return await _storage_call("semantic_search_files", user_id, query=query, limit=limit)


async def query_workspace_knowledge(user_id: str, query: str) -> ToolResult:
    """Answer a question from the content of the user's indexed files.

    Args:
        query: The question to answer.
    """
    return await _storage_call("query_workspace_knowledge", user_id, query=query)


async def summarize_directory(user_id: str, folderId: str = None) -> ToolResult:
    """Summarize what a folder contains: counts, types and notable files.

    Args:
        folderId: The folder ID (omit for the root folder).
    """
    return await _storage_call("summarize_directory", user_id, folderId=folderId)


async def index_file(user_id: str, fileId: str) -> ToolResult:
    """Add or refresh a file in the semantic search index.

    Args:
        fileId: The file ID to index.
    """
    return await _storage_call("index_file", user_id, fileId=fileId)


async def index_all_files(user_id: str) -> ToolResult:
    """Index every text file the user owns for semantic search."""
    return await _storage_call("index_all_files", user_id)


async def get_indexing_status(user_id: str) -> ToolResult:
    """Report how many of the user's files are indexed and which are pending."""
    return await _storage_call("get_indexing_status", user_id)


def get_all_tools() -> list:
    """Return every catalogue tool function."""
    return [
        # Files
        list_files, get_file_info, read_file, write_file, create_file,
        rename_file, move_file, trash_file, restore_file, delete_file,
        star_file, get_download_url,
        # Documents
        patch_file,
        # Folders
        list_folder_contents, create_folder, rename_folder, move_folder,
        trash_folder, restore_folder, delete_folder, get_folder_path, star_folder,
        # Sharing
        create_share_link, list_share_links, revoke_share_link,
        share_with_users, get_permissions, list_shared_with_me,
        # Search & knowledge
        search_files, semantic_search_files, query_workspace_knowledge,
        summarize_directory, index_file, index_all_files, get_indexing_status,
    ]


# ── Schemas ──

_INJECTED_PARAMS = {"user_id"}
_ARG_LINE = re.compile(r"^\s*(\w+):\s*(.+)$")


def _split_docstring(doc: str) -> tuple[str, dict[str, str]]:
    """Split a Google-style docstring into (description, {param: text})."""
    doc = inspect.cleandoc(doc or "")
    if "Args:" not in doc:
        return doc, {}
    head, _, args_block = doc.partition("Args:")
    params = {}
    for line in args_block.splitlines():
        m = _ARG_LINE.match(line)
        if m:
            params[m.group(1)] = m.group(2).strip()
    return head.strip(), params


def _json_type(hint) -> dict:
    if hint is int:
        return {"type": "integer"}
    if hint is float:
        return {"type": "number"}
    if hint is bool:
        return {"type": "boolean"}
    if getattr(hint, "__origin__", None) is list:
        item = (getattr(hint, "__args__", None) or (str,))[0]
        return {"type": "array", "items": {"type": "object"} if item is dict else _json_type(item)}
    return {"type": "string"}


def _build_tool_schemas(tools: list) -> list[dict]:
    """Convert tool functions to OpenAI-compatible tool schemas."""
    schemas = []
    for fn in tools:
        sig = inspect.signature(fn)
        description, param_docs = _split_docstring(fn.__doc__)
        params = {}
        required = []
        for name, param in sig.parameters.items():
            if name in _INJECTED_PARAMS:
                continue
            schema = _json_type(fn.__annotations__.get(name, str))
            schema["description"] = param_docs.get(name, f"The {name} parameter")
            params[name] = schema
            if param.default is inspect.Parameter.empty:
                required.append(name)

        schemas.append({
            "type": "function",
            "function": {
                "name": fn.__name__,
                "description": description,
                "parameters": {
                    "type": "object",
                    "properties": params,
                    "required": required,
                },
            },
        })
    return schemas


class ToolRegistry:
    """Name -> async handler map with per-agent schema views.

    Handlers take the caller's user id first, then the model's arguments,
    and return a ToolResult (plain strings are wrapped).
    """

    def __init__(self, tools: list = None):
        self._tools = {fn.__name__: fn for fn in (get_all_tools() if tools is None else tools)}
        self._schema_cache: dict[str, list[dict]] = {}

    def register(self, fn, name: str = None):
        """Add or replace a handler."""
        self._tools[name or fn.__name__] = fn
        self._schema_cache.clear()

    def has(self, name: str) -> bool:
        return name in self._tools

    @property
    def names(self) -> list[str]:
        return list(self._tools)

    def schemas_for(self, agent_type: str) -> list[dict]:
        """Tool schemas visible to an agent type (lazy-built, cached)."""
        if agent_type not in self._schema_cache:
            allowed = AGENT_TOOL_FILTER.get(agent_type, [])
            fns = [self._tools[n] for n in allowed if n in self._tools]
            self._schema_cache[agent_type] = _build_tool_schemas(fns)
        return self._schema_cache[agent_type]

    async def execute(self, name: str, arguments: dict, user_id: str) -> ToolResult:
        """Execute a tool by name. Never raises; failures come back as error results."""
        fn = self._tools.get(name)
        if not fn:
            return ToolResult(f"Error: unknown tool '{name}'", True)
        args = {k: v for k, v in (arguments or {}).items() if k not in ("userId", "user_id")}
        try:
            result = fn(user_id, **args)
            if asyncio.iscoroutine(result):
                result = await result
        except TypeError as e:
            return ToolResult(f"Error: invalid arguments for {name}: {e}", True)
        except Exception as e:
            logger.error("Tool %s raised: %s", name, e)
            return ToolResult(f"Error executing {name}: {e}", True)
        if isinstance(result, ToolResult):
            return result
        return ToolResult(str(result))
