"""Worker agents."""

from agents.worker import AgentPhase, AgentSnapshot, WorkerAgent

__all__ = ["AgentPhase", "AgentSnapshot", "WorkerAgent"]
