"""
Configuration: centralized settings for the entire backend.
Deployment values come from profile.yaml via get_profile().
Tool catalogues, risk tiers and internal constants remain as code constants.
"""

import os
from pathlib import Path as _Path

from profile import get_profile

_profile = get_profile()
_limits = _profile.limits

# ── Shared Store ──
REDIS_URL = os.environ.get("DRIVE_REDIS_URL", _profile.redis.url)

# ── Storage Service ──
STORAGE_ENDPOINT = os.environ.get("DRIVE_STORAGE_ENDPOINT", _profile.storage.endpoint)
STORAGE_TIMEOUT = _profile.storage.timeout
STORAGE_API_KEY = os.environ.get("DRIVE_STORAGE_KEY", "")
DB_PATH = _Path(_profile.storage.db_path) if _profile.storage.db_path else _Path(__file__).parent / "assistant.db"

# ── Model Keys ──
AGENT_MODEL = "agent"
PLANNER_MODEL = "planner"
SUMMARIZER_MODEL = "summarizer"

TOKEN_LIMITS = {
    AGENT_MODEL: _profile.inference.models.agent.max_tokens or 4096,
    PLANNER_MODEL: _profile.inference.models.planner.max_tokens or 800,
    SUMMARIZER_MODEL: _profile.inference.models.summarizer.max_tokens or 500,
    "classifier": 120,
}

TEMPERATURE = {
    AGENT_MODEL: _profile.inference.models.agent.temperature,
    PLANNER_MODEL: _profile.inference.models.planner.temperature,
    SUMMARIZER_MODEL: _profile.inference.models.summarizer.temperature,
    "classifier": 0.0,
}

DEFAULT_TIMEOUT = 120

# ── Execution Limits ──
MAX_TOOL_RETRIES = _limits.max_tool_retries
MAX_TOOL_CALLS_PER_TURN = _limits.max_tool_calls_per_turn
MAX_TOOL_RESULT_CHARS = _limits.max_tool_result_chars
CHARS_PER_TOKEN = 4
MAX_CONTEXT_CHARS = _limits.max_context_tokens * CHARS_PER_TOKEN
KEEP_RECENT = 6

# ── Gateway ──
RATE_WINDOW_SECONDS = _limits.rate_window_seconds
MAX_OPS_PER_WINDOW = _limits.max_ops_per_window
APPROVAL_TTL_SECONDS = _limits.approval_ttl_seconds
APPROVAL_SWEEP_INTERVAL = _limits.approval_sweep_interval

# ── Memory ──
MEMORY_SLIDING_WINDOW = _limits.memory_sliding_window
MEMORY_SUMMARY_THRESHOLD = _limits.memory_summary_threshold

# ── Planner ──
TASK_COMPLEXITY_THRESHOLD = _limits.task_complexity_threshold
MAX_PLAN_STEPS = 6

# ── Task Queue ──
WORKER_CONCURRENCY = _limits.worker_concurrency
TASK_RESULT_TTL = _limits.task_result_ttl
WORKER_POLL_INTERVAL = 0.2

# ── Resource Lock ──
LOCK_TTL = _limits.lock_ttl
LOCK_RETRIES = _limits.lock_retries
LOCK_RETRY_DELAY = _limits.lock_retry_delay

# ── Agent Types ──
AGENT_TYPES = ("drive", "document", "search")
DEFAULT_AGENT_TYPE = "drive"
CONVERSATION_LIST_LIMIT = 50

AGENT_DESCRIPTIONS = {
    "drive": {
        "description": "File and folder management: create, delete, move, rename, share and permissions.",
        "capabilities": [
            "File/folder CRUD (create, rename, move, delete, recycle bin)",
            "Sharing and permission management",
            "File starring, download links",
        ],
    },
    "document": {
        "description": "Document content reading and editing through precise patch operations.",
        "capabilities": [
            "Document content read and write",
            "Patch editing (replace, insert, append, delete text)",
            "Writing, polishing, translation, rewriting",
        ],
    },
    "search": {
        "description": "Search, knowledge retrieval and index management.",
        "capabilities": [
            "Filename/extension search",
            "Semantic search",
            "Knowledge-base QA",
            "Index management",
        ],
    },
}

# ── Per-Agent Tool Filtering ──
AGENT_TOOL_FILTER = {
    "drive": [
        "list_files", "get_file_info", "create_file", "rename_file",
        "move_file", "trash_file", "restore_file", "delete_file",
        "star_file", "get_download_url",
        "list_folder_contents", "create_folder", "rename_folder",
        "move_folder", "trash_folder", "restore_folder", "delete_folder",
        "get_folder_path", "star_folder",
        "create_share_link", "list_share_links", "revoke_share_link",
        "share_with_users", "get_permissions", "list_shared_with_me",
        "search_files",
    ],
    "document": [
        "read_file", "patch_file", "get_file_info",
        "list_folder_contents", "search_files",
    ],
    "search": [
        "search_files", "semantic_search_files", "query_workspace_knowledge",
        "summarize_directory", "index_file", "index_all_files",
        "get_indexing_status", "get_file_info", "read_file",
        "list_folder_contents", "get_folder_path", "list_files",
    ],
}

# Where the ACL denial points the caller instead
AGENT_REDIRECT_HINTS = {
    "drive": "Document editing operations should be performed in the Document editor.",
    "document": "File/folder management operations should be performed in the Drive workspace.",
    "search": "Modifying files should be handled by the Drive or Document agent.",
}

# ── Operation Risk Tiers ──
OPERATION_RISK = {
    "list_files": "safe",
    "get_file_info": "safe",
    "read_file": "safe",
    "list_folder_contents": "safe",
    "get_folder_path": "safe",
    "search_files": "safe",
    "summarize_directory": "safe",
    "query_workspace_knowledge": "safe",
    "get_permissions": "safe",
    "list_share_links": "safe",
    "list_shared_with_me": "safe",
    "get_download_url": "safe",
    "get_indexing_status": "safe",
    "semantic_search_files": "safe",

    "create_file": "moderate",
    "rename_file": "moderate",
    "move_file": "moderate",
    "star_file": "moderate",
    "create_folder": "moderate",
    "rename_folder": "moderate",
    "move_folder": "moderate",
    "star_folder": "moderate",
    "create_share_link": "moderate",
    "restore_file": "moderate",
    "restore_folder": "moderate",
    "index_file": "moderate",
    "index_all_files": "moderate",

    "write_file": "dangerous",
    "patch_file": "dangerous",
    "trash_file": "dangerous",
    "trash_folder": "dangerous",
    "delete_file": "dangerous",
    "delete_folder": "dangerous",
    "revoke_share_link": "dangerous",
    "share_with_users": "dangerous",
}
DEFAULT_RISK = "moderate"

# Mutating tools serialized per resource id
WRITE_TOOLS = {
    "create_file", "rename_file", "move_file", "trash_file", "restore_file",
    "delete_file", "star_file", "write_file", "patch_file",
    "create_folder", "rename_folder", "move_folder", "trash_folder",
    "restore_folder", "delete_folder", "star_folder",
    "create_share_link", "revoke_share_link", "share_with_users",
}
