from .config import Config
from .controller import CancellationToken, OptimizationController, SnapshotArena
from .coordinator import CoordinatorOptions, MultiCategoryCoordinator, PriorityOrder
from .budget import ContextBudgetManager
from .validation import Validator
from .models import Category, Document, OptimizationResult, MultiCategoryResult, SectionSelector

__version__ = "0.1.0"

__all__ = [
    "Config",
    "CancellationToken",
    "OptimizationController",
    "SnapshotArena",
    "CoordinatorOptions",
    "MultiCategoryCoordinator",
    "PriorityOrder",
    "ContextBudgetManager",
    "Validator",
    "Category",
    "Document",
    "OptimizationResult",
    "MultiCategoryResult",
    "SectionSelector",
]
