"""
DriveAgent: workspace management (file/folder CRUD, sharing, name search).

Context: the listing of the current folder and its path, loaded on every run.
"""

import logging

from agents.base import AgentContext, BaseAgent, register_agent_class
from agents.prompts import build_drive_prompt

logger = logging.getLogger(__name__)

ROOT_PATH = "/ (root)"


@register_agent_class
class DriveAgent(BaseAgent):
    AGENT_ID = "drive"

    async def enrich_context(self, context: AgentContext) -> AgentContext:
        folder_id = context.folder_id or "root"
        snapshot = "(Could not load workspace snapshot)"
        folder_path = ROOT_PATH
        try:
            contents = await self.fetch(context, "list_folder_contents", folderId=folder_id)
            if not contents.is_error:
                snapshot = contents.content
            if folder_id != "root":
                path = await self.fetch(context, "get_folder_path", folderId=folder_id)
                if not path.is_error:
                    folder_path = path.content
            logger.debug("Drive context enriched for folder %s", folder_id)
        except Exception as e:
            logger.warning("Failed to enrich drive context, proceeding without snapshot: %s", e)

        enriched = context.with_type(self.agent_id)
        enriched.workspace_snapshot = snapshot
        enriched.folder_path = folder_path
        return enriched

    def get_system_prompt(self, context: AgentContext) -> str:
        return build_drive_prompt(context)
