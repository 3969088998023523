from .base import ActionTemplate, CategoryPlanner, Phase
from .planners import PLANNERS, PlannerRegistry, planner_for

__all__ = [
    "ActionTemplate",
    "CategoryPlanner",
    "Phase",
    "PLANNERS",
    "PlannerRegistry",
    "planner_for",
]
