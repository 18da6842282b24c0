"""
DocumentAgent: reads and edits the document the user has open.

Context: the current document's content and name, plus related workspace
content from semantic search when the index can provide it.
"""

import json
import logging

from agents.base import AgentContext, BaseAgent, register_agent_class
from agents.prompts import build_document_prompt

logger = logging.getLogger(__name__)

RELATED_RESULTS = 5


@register_agent_class
class DocumentAgent(BaseAgent):
    AGENT_ID = "document"

    async def enrich_context(self, context: AgentContext) -> AgentContext:
        enriched = context.with_type(self.agent_id)
        if not context.file_id:
            logger.warning("Document agent invoked without fileId")
            return enriched

        try:
            result = await self.fetch(context, "read_file", fileId=context.file_id)
            if result.is_error:
                raise RuntimeError(result.content)
            enriched.document_content, enriched.document_name = _split_document(result.content)
        except Exception as e:
            logger.warning("Failed to read document %s for context: %s", context.file_id, e)
            enriched.document_content = "(Could not load document content)"

        try:
            related = await self.fetch(
                context, "semantic_search_files",
                query=enriched.document_name or "related documents", limit=RELATED_RESULTS,
            )
            if not related.is_error and len(related.content) > 10:
                enriched.related_context = related.content
        except Exception:
            logger.debug("Semantic search unavailable for document context")

        return enriched

    def get_system_prompt(self, context: AgentContext) -> str:
        return build_document_prompt(context)


def _split_document(raw: str) -> tuple[str, str]:
    """read_file answers JSON {file: {name}, content} or plain text."""
    try:
        parsed = json.loads(raw)
    except ValueError:
        return raw, "Unknown document"
    if not isinstance(parsed, dict):
        return raw, "Unknown document"
    name = (parsed.get("file") or {}).get("name") or "Unknown document"
    return parsed.get("content") or raw, name
