"""
Agent System: import all agents to trigger auto-registration.

Each agent decorated with @register_agent_class registers itself in
BaseAgent._registry on import. Importing this package ensures all
agents are available for build_agent_table().
"""

from agents.drive import DriveAgent  # noqa: F401
from agents.document import DocumentAgent  # noqa: F401
from agents.search import SearchAgent  # noqa: F401
