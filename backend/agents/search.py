"""
SearchAgent: name search, semantic search, knowledge queries and indexing.

Context: the workspace indexing status and the current folder path.
"""

import logging

from agents.base import AgentContext, BaseAgent, register_agent_class
from agents.prompts import build_search_prompt

logger = logging.getLogger(__name__)


@register_agent_class
class SearchAgent(BaseAgent):
    AGENT_ID = "search"

    async def enrich_context(self, context: AgentContext) -> AgentContext:
        enriched = context.with_type(self.agent_id)
        try:
            status = await self.fetch(context, "get_indexing_status")
            if not status.is_error:
                enriched.related_context = f"## Indexing Status\n{status.content}"
        except Exception as e:
            logger.warning("Failed to load indexing status for search context: %s", e)

        enriched.folder_path = "/ (root)"
        folder_id = context.folder_id
        if folder_id and folder_id != "root":
            try:
                path = await self.fetch(context, "get_folder_path", folderId=folder_id)
                if not path.is_error:
                    enriched.folder_path = path.content
            except Exception:
                logger.debug("Folder path unavailable for %s", folder_id)
        return enriched

    def get_system_prompt(self, context: AgentContext) -> str:
        return build_search_prompt(context)
