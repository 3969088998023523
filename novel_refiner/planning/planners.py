"""One planner per improvement category."""

from typing import Optional

from ..collaborators import Assessor
from ..config import PlanningConfig
from ..models import Category, ImprovementType as IT, Region
from .base import ActionTemplate, CategoryPlanner, Phase


class TensionPlanner(CategoryPlanner):
    category = Category.TENSION
    summary = "tension: escalate conflicts, inject micro-tensions, fix tension-release balance"
    templates = {
        "low_tension_sections": ActionTemplate(Region.MIDDLE, IT.ADD_CONTENT),
        "low_friction": ActionTemplate(Region.THROUGHOUT, IT.ADD_CONTENT),
        "flat_tension_curve": ActionTemplate(phase=Phase.CLIMAX),
    }


class ThemePlanner(CategoryPlanner):
    category = Category.THEME
    summary = "themes: establish primary themes, weave motifs, resolve thematic questions"
    templates = {
        "weak_theme_presence": ActionTemplate(Region.THROUGHOUT, IT.ADD_CONTENT),
        "no_primary_theme": ActionTemplate(phase=Phase.EARLY),
        "unresolved_theme": ActionTemplate(phase=Phase.CLIMAX),
    }


class StructurePlanner(CategoryPlanner):
    category = Category.STRUCTURE
    summary = "story structure: fix act proportions, add missing beats, strengthen pacing"
    templates = {
        "pacing_sag": ActionTemplate(Region.THROUGHOUT, IT.ENHANCE_QUALITY),
        "short_setup": ActionTemplate(phase=Phase.EARLY),
        "compressed_climax": ActionTemplate(phase=Phase.CLIMAX),
    }


class EngagementPlanner(CategoryPlanner):
    category = Category.ENGAGEMENT
    summary = "reader engagement: sharpen hooks, cliffhangers and dialogue"
    templates = {
        "weak_opening": ActionTemplate(Region.BEGINNING, IT.MODIFY_CONTENT),
        "weak_endings": ActionTemplate(Region.END, IT.ADD_CONTENT),
        "low_dialogue": ActionTemplate(Region.MIDDLE, IT.MODIFY_CONTENT),
    }


class CharacterPlanner(CategoryPlanner):
    category = Category.CHARACTER
    summary = "character psychology and presence"
    templates = {
        "absent_protagonist": ActionTemplate(Region.THROUGHOUT, IT.MODIFY_CONTENT),
        "no_primary_character": ActionTemplate(phase=Phase.EARLY),
        "unused_characters": ActionTemplate(phase=Phase.MIDDLE),
    }


class ProsePlanner(CategoryPlanner):
    category = Category.PROSE
    summary = "prose quality: sentence variety and repetition"
    templates = {
        "repetition": ActionTemplate(Region.THROUGHOUT, IT.FIX_ISSUE),
        "long_sentences": ActionTemplate(Region.THROUGHOUT, IT.MODIFY_CONTENT),
    }


class LiteraryDevicesPlanner(CategoryPlanner):
    category = Category.LITERARY_DEVICES
    summary = "literary devices: imagery, foreshadowing and symbolism"
    templates = {
        "low_device_usage": ActionTemplate(Region.THROUGHOUT, IT.ENHANCE_QUALITY),
        "generic_prose": ActionTemplate(Region.THROUGHOUT, IT.MODIFY_CONTENT),
        "missing_devices": ActionTemplate(Region.MIDDLE, IT.ADD_CONTENT),
    }
    default_template = ActionTemplate(Region.MIDDLE, IT.ENHANCE_QUALITY)


class ExcellencePlanner(CategoryPlanner):
    category = Category.EXCELLENCE
    summary = "overall excellence across structure, tension, theme, character, prose and devices"
    templates = {
        **TensionPlanner.templates,
        **ThemePlanner.templates,
        **StructurePlanner.templates,
        **EngagementPlanner.templates,
        **CharacterPlanner.templates,
        **ProsePlanner.templates,
        **LiteraryDevicesPlanner.templates,
    }


class OriginalityPlanner(CategoryPlanner):
    category = Category.ORIGINALITY
    summary = "originality: replace cliches with fresh choices"
    default_template = ActionTemplate(Region.THROUGHOUT, IT.MODIFY_CONTENT)


class VoicePlanner(CategoryPlanner):
    category = Category.VOICE
    summary = "narrative voice consistency and distinctiveness"
    default_template = ActionTemplate(Region.THROUGHOUT, IT.MODIFY_CONTENT)


class MarketReadinessPlanner(CategoryPlanner):
    category = Category.MARKET_READINESS
    summary = "market readiness: genre expectations and polish"
    default_template = ActionTemplate(Region.THROUGHOUT, IT.ENHANCE_QUALITY)


PLANNERS: dict[Category, type[CategoryPlanner]] = {
    cls.category: cls
    for cls in (
        TensionPlanner,
        ThemePlanner,
        StructurePlanner,
        EngagementPlanner,
        CharacterPlanner,
        ProsePlanner,
        ExcellencePlanner,
        OriginalityPlanner,
        VoicePlanner,
        LiteraryDevicesPlanner,
        MarketReadinessPlanner,
    )
}


def planner_for(
    category, assessor: Assessor, config: Optional[PlanningConfig] = None
) -> CategoryPlanner:
    """Instantiate the planner for ``category`` (names and aliases accepted)."""
    return PLANNERS[Category.normalize(category)](assessor, config)


class PlannerRegistry:
    """Planner collaborator that dispatches to the per-category planner."""

    def __init__(self, assessor: Assessor, config: Optional[PlanningConfig] = None):
        self.assessor = assessor
        self.config = config
        self._planners: dict[Category, CategoryPlanner] = {}

    def plan(self, document, category, target_score, section_filter=None):
        category = Category.normalize(category)
        if category not in self._planners:
            self._planners[category] = planner_for(category, self.assessor, self.config)
        return self._planners[category].plan(document, category, target_score, section_filter)
