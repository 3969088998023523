from .base import AgentLog, BaseAgent
from .editor import GenerationExecutor
from .judge import LLMJudge

__all__ = ["AgentLog", "BaseAgent", "GenerationExecutor", "LLMJudge"]
