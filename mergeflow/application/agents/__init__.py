"""Agent task orchestration."""

from .task_manager import AgentTaskManager, offline_response

__all__ = ["AgentTaskManager", "offline_response"]
