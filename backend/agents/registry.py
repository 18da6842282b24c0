"""
Agent table and router.

The orchestrator dispatches through an explicit agent-type -> agent map built
here. Untracked single requests pick their agent with route_to_agent, in
order of precedence:
  1. explicit context type from the client
  2. the agent type stored on the conversation
  3. pattern scoring on the message (document must outscore drive)
  4. default: drive
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional

from agents.base import BaseAgent
from config import AGENT_TYPES, DEFAULT_AGENT_TYPE

logger = logging.getLogger(__name__)

DOCUMENT_PATTERNS = [
    re.compile(r"\b(write|edit|draft|compose|rewrite|proofread|revise|redraft)\b", re.I),
    re.compile(r"\b(add|append|prepend|insert)\s+(text|content|paragraph|section|line|sentence)", re.I),
    re.compile(r"\b(modify|change|update|fix|correct)\s+(the\s+)?(text|content|document|paragraph)", re.I),
    re.compile(r"\b(write|tell)\s+(me\s+)?(a\s+)?(story|article|essay|poem|report|letter|email|summary)", re.I),
    re.compile(r"\b(translate|rephrase|paraphrase|simplify|expand)\b", re.I),
    re.compile(r"(文档|编辑|修改|撰写|写|改写|润色|翻译|添加|追加|插入|删除文字|删除段落)"),
    re.compile(r"\b(patch|diff)\b", re.I),
    re.compile(r"\bin\s+(this|the)\s+(document|file|text|doc)\b", re.I),
    re.compile(r"\b(spell.?check|grammar|format\s+text)\b", re.I),
]

DRIVE_PATTERNS = [
    re.compile(r"\b(create|make|new)\s+(a\s+)?(file|folder|directory|document|spreadsheet|presentation)\b", re.I),
    re.compile(r"\b(delete|remove|trash|restore)\s+(the\s+)?(file|folder|directory|all)\b", re.I),
    re.compile(r"\b(move|copy|rename)\s+(the\s+)?(file|folder|directory|it)\b", re.I),
    re.compile(r"\b(share|unshare|permission|access)\b", re.I),
    re.compile(r"\b(search|find|look\s+for|locate)\s+(files?|folders?|documents?)\b", re.I),
    re.compile(r"\b(list|show|display)\s+(my\s+)?(files?|folders?|directory|contents?|starred|trashed|recent)\b", re.I),
    re.compile(r"\b(download|upload|star|unstar)\b", re.I),
    re.compile(r"\b(index|semantic\s+search)\b", re.I),
    re.compile(r"(创建|删除|移动|重命名|分享|搜索|查找|列出|下载|上传|收藏|回收站|文件夹|共享)"),
    re.compile(r"\b(share\s+link|share\s+with)\b", re.I),
    re.compile(r"\bhow\s+(many|much)\s+(files?|folders?|space|storage)\b", re.I),
]


@dataclass
class RouteDecision:
    agent_type: str
    source: str  # explicit | conversation | pattern | default
    doc_score: int = 0
    drive_score: int = 0

    def to_dict(self) -> dict:
        return {
            "agentType": self.agent_type,
            "source": self.source,
            "docScore": self.doc_score,
            "driveScore": self.drive_score,
        }


def _score(patterns: list, message: str) -> int:
    return sum(1 for p in patterns if p.search(message))


class AgentRouter:
    """Chooses the agent for a request that is not running under a plan."""

    def route_to_agent(self, message: str, explicit_type: str = None,
                       conversation_agent_type: str = None) -> RouteDecision:
        if explicit_type in AGENT_TYPES:
            logger.debug("Agent routed via explicit context: %s", explicit_type)
            return RouteDecision(explicit_type, "explicit")

        if conversation_agent_type in AGENT_TYPES:
            logger.debug("Agent routed via conversation: %s", conversation_agent_type)
            return RouteDecision(conversation_agent_type, "conversation")

        doc_score = _score(DOCUMENT_PATTERNS, message)
        drive_score = _score(DRIVE_PATTERNS, message)
        if doc_score > 0 and doc_score > drive_score:
            logger.debug("Agent routed to document by pattern (%d vs %d)", doc_score, drive_score)
            return RouteDecision("document", "pattern", doc_score, drive_score)
        if drive_score > 0:
            logger.debug("Agent routed to drive by pattern (%d vs %d)", doc_score, drive_score)
            return RouteDecision("drive", "pattern", doc_score, drive_score)

        return RouteDecision(DEFAULT_AGENT_TYPE, "default")


def build_agent_table(agent_core) -> dict[str, BaseAgent]:
    """Instantiate every registered agent, keyed by agent type."""
    table = BaseAgent.create_all(agent_core)
    missing = [t for t in AGENT_TYPES if t not in table]
    if missing:
        logger.warning("No agent registered for types: %s", ", ".join(missing))
    return table


def get_agent(table: dict[str, BaseAgent], agent_type: str) -> Optional[BaseAgent]:
    """The agent registered for a type, or None (logged) when there is none."""
    agent = table.get(agent_type)
    if agent is None:
        logger.error("No agent registered for type %s", agent_type)
    return agent
