"""
Orchestration: task planning, the DAG orchestrator, the task queue and the
event bus that carries task and approval events between processes.
"""
