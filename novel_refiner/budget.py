"""Context budgeting: size estimation and staged reduction of document views.

Size-constrained collaborators (LLM calls) only ever see a view of the
document that fits their input budget. Reduction degrades in three tiers:

* ``full``    - everything, recent sections in full
* ``reduced`` - fewer full sections, older ones summarised, referenced
  entities and essential world entries only
* ``minimal`` - the smallest useful view

Each tier is only used when the previous one is still over budget.
"""

import math
from enum import Enum
from typing import Optional

from loguru import logger
from pydantic import BaseModel, Field

from .config import BudgetConfig
from .errors import ResourceExceeded
from .models import Character, Document, Section, WorldEntry


class ContextTier(str, Enum):
    FULL = "full"
    REDUCED = "reduced"
    MINIMAL = "minimal"


class SizeBreakdown(BaseModel):
    world: int = 0
    sections: int = 0
    characters: int = 0
    metadata: int = 0
    instruction: int = 0
    overhead: int = 0


class ContextSizeEstimate(BaseModel):
    total: int
    breakdown: SizeBreakdown


class ReducedContext(BaseModel):
    document: Document
    tier: ContextTier
    sections_included: list[int]
    full_sections: list[int]
    entities_included: list[str]
    world_entries_included: int
    estimate: ContextSizeEstimate
    fits: bool


class EditContext(BaseModel):
    document: Document
    estimated_tokens: int


class SectionBatch(BaseModel):
    batch_number: int
    sections: list[Section]
    start: int
    end: int


class ContextBudgetManager:
    """Estimates document-view sizes and reduces views to fit a token budget."""

    def __init__(self, config: Optional[BudgetConfig] = None):
        self.config = config or BudgetConfig()

    # ------------------------------------------------------------------
    # Estimation
    # ------------------------------------------------------------------

    def estimate_tokens(self, text: str) -> int:
        if not text:
            return 0
        return math.ceil(len(text) / self.config.chars_per_token)

    def estimate_size(
        self,
        document: Document,
        recent_full_sections: Optional[int] = None,
        instruction: str = "",
        world_constraints: str = "",
        include_world: bool = True,
        include_characters: bool = True,
    ) -> ContextSizeEstimate:
        """Estimate the token size of a document view.

        The last ``recent_full_sections`` sections count with their full text,
        older ones by title and summary only.
        """
        window = (
            self.config.recent_full_sections
            if recent_full_sections is None
            else recent_full_sections
        )

        world = 0
        if include_world and document.world_entries:
            world = self.estimate_tokens(
                "\n".join(f"{e.title}: {e.content}" for e in document.world_entries)
            )
        world += self.estimate_tokens(world_constraints)

        sections = list(document.sections)
        split = max(len(sections) - window, 0) if window > 0 else len(sections)
        older, recent = sections[:split], sections[split:]
        section_text = "\n".join(
            f"Ch {s.number}: {s.title} - {s.summary or ''}" for s in older
        )
        if recent:
            section_text += "\n\n" + "\n\n".join(
                f"{s.title}\n{s.content}\n{s.summary or ''}" for s in recent
            )
        section_tokens = self.estimate_tokens(section_text)

        characters = 0
        if include_characters and document.characters:
            characters = self.estimate_tokens(
                "\n".join(_character_line(c) for c in document.characters)
            )

        metadata = self.estimate_tokens(
            " ".join([document.title, document.genre, *document.themes])
        )
        breakdown = SizeBreakdown(
            world=world,
            sections=section_tokens,
            characters=characters,
            metadata=metadata,
            instruction=self.estimate_tokens(instruction),
            overhead=self.config.instruction_overhead,
        )
        total = (
            breakdown.world
            + breakdown.sections
            + breakdown.characters
            + breakdown.metadata
            + breakdown.instruction
            + breakdown.overhead
        )
        return ContextSizeEstimate(total=total, breakdown=breakdown)

    # ------------------------------------------------------------------
    # Reduction
    # ------------------------------------------------------------------

    def reduce(self, document: Document, target_budget: Optional[int] = None) -> ReducedContext:
        """Reduce ``document`` to fit ``target_budget`` tokens.

        Never raises: when even the minimal tier is over budget the minimal
        view is returned with ``fits=False``.
        """
        cfg = self.config
        budget = cfg.target_tokens if target_budget is None else target_budget
        all_numbers = [s.number for s in document.sections]

        full_estimate = self.estimate_size(document, cfg.recent_full_sections)
        if full_estimate.total <= budget:
            return ReducedContext(
                document=document,
                tier=ContextTier.FULL,
                sections_included=all_numbers,
                full_sections=all_numbers,
                entities_included=[c.id for c in document.characters],
                world_entries_included=len(document.world_entries),
                estimate=full_estimate,
                fits=True,
            )

        # Reduced tier
        recent_window = document.sections[-cfg.reduced_recent_sections:]
        referenced = _referenced_characters(
            document.characters,
            " ".join(f"{s.content} {s.summary or ''}" for s in recent_window),
        )
        primary = document.primary_character
        if primary is not None and primary not in referenced:
            characters = [primary, *referenced]
        elif referenced:
            characters = referenced
        else:
            characters = list(document.characters[: cfg.fallback_entity_cap])

        essential = self._essential_world(document.world_entries)
        if essential:
            world = essential[: cfg.reduced_world_cap]
        else:
            world = list(document.world_entries[: cfg.fallback_world_cap])

        reduced_doc = self._view(
            document, cfg.reduced_recent_sections, characters, world
        )
        reduced_estimate = self.estimate_size(reduced_doc, cfg.reduced_recent_sections)
        if reduced_estimate.total <= budget:
            logger.debug(
                "Reduced context to {} tokens (budget {})", reduced_estimate.total, budget
            )
            return ReducedContext(
                document=reduced_doc,
                tier=ContextTier.REDUCED,
                sections_included=all_numbers,
                full_sections=[s.number for s in recent_window],
                entities_included=[c.id for c in characters],
                world_entries_included=len(world),
                estimate=reduced_estimate,
                fits=True,
            )

        # Minimal tier
        minimal_characters = [primary] if primary is not None else []
        minimal_characters += [c for c in referenced if c is not primary][: cfg.minimal_entity_cap]
        minimal_world = world[: cfg.minimal_world_cap]
        minimal_doc = self._view(
            document, cfg.minimal_recent_sections, minimal_characters, minimal_world
        )
        minimal_estimate = self.estimate_size(minimal_doc, cfg.minimal_recent_sections)
        fits = minimal_estimate.total <= budget
        if not fits:
            logger.warning(
                "Minimal context ({} tokens) still exceeds budget of {}",
                minimal_estimate.total,
                budget,
            )
        return ReducedContext(
            document=minimal_doc,
            tier=ContextTier.MINIMAL,
            sections_included=all_numbers,
            full_sections=[s.number for s in document.sections[-cfg.minimal_recent_sections:]],
            entities_included=[c.id for c in minimal_characters],
            world_entries_included=len(minimal_world),
            estimate=minimal_estimate,
            fits=fits,
        )

    def minimal_context_for_edit(self, section: Section, document: Document) -> EditContext:
        """Build the smallest useful view for editing exactly one section."""
        cfg = self.config
        sections = list(document.sections)
        index = next((i for i, s in enumerate(sections) if s.id == section.id), None)

        view_sections = []
        if index is not None and index > 0:
            previous = sections[index - 1]
            tail = previous.content[-cfg.edit_previous_tail_chars:] if cfg.edit_previous_tail_chars else ""
            view_sections.append(previous.model_copy(update={"content": tail}))
        view_sections.append(section)
        if index is not None and index < len(sections) - 1:
            following = sections[index + 1]
            view_sections.append(
                following.model_copy(update={"content": following.content[: cfg.edit_next_head_chars]})
            )

        matched = _referenced_characters(
            document.characters, " ".join(s.content for s in view_sections)
        )
        primary = document.primary_character
        if matched:
            characters = matched
            if primary is not None and primary not in matched:
                characters = [primary, *matched]
        else:
            characters = [primary] if primary is not None else []
            characters += [
                c for c in document.characters[: cfg.edit_fallback_entities] if c is not primary
            ]

        world = self._essential_world(document.world_entries)[: cfg.minimal_world_cap]
        view = document.model_copy(
            update={
                "sections": tuple(view_sections),
                "characters": tuple(characters),
                "world_entries": tuple(world),
            }
        )
        tokens = self.estimate_size(view, recent_full_sections=len(view_sections)).total
        return EditContext(document=view, estimated_tokens=tokens)

    # ------------------------------------------------------------------
    # Safety helpers
    # ------------------------------------------------------------------

    def is_context_safe(
        self, estimated_tokens: int, max_tokens: Optional[int] = None
    ) -> tuple[bool, Optional[str]]:
        limit = max_tokens or self.config.max_safe_tokens
        if estimated_tokens > limit:
            return False, (
                f"Context too large: {estimated_tokens:,} tokens exceeds limit of {limit:,}"
            )
        if estimated_tokens > limit * 0.8:
            return True, (
                f"High token usage: {estimated_tokens:,} tokens "
                f"({round(estimated_tokens / limit * 100)}% of limit)"
            )
        return True, None

    def ensure_within(self, document: Document, budget: Optional[int] = None) -> ReducedContext:
        """Reduce ``document`` to ``budget`` or raise ResourceExceeded."""
        limit = budget or self.config.max_safe_tokens
        reduced = self.reduce(document, limit)
        if not reduced.fits:
            raise ResourceExceeded(reduced.estimate.total, limit)
        return reduced

    def split_into_batches(self, document: Document, max_sections: int = 10) -> list[SectionBatch]:
        if max_sections <= 0:
            raise ValueError("max_sections must be positive")
        sections = list(document.sections)
        batches = []
        for i in range(0, len(sections), max_sections):
            chunk = sections[i : i + max_sections]
            batches.append(
                SectionBatch(
                    batch_number=i // max_sections + 1,
                    sections=chunk,
                    start=chunk[0].number,
                    end=chunk[-1].number,
                )
            )
        return batches

    # ------------------------------------------------------------------

    def _essential_world(self, entries) -> list[WorldEntry]:
        allowed = set(self.config.essential_world_categories)
        return [e for e in entries if e.category in allowed]

    @staticmethod
    def _view(document: Document, window: int, characters, world) -> Document:
        """Summarise all but the last ``window`` sections and swap in entity lists."""
        sections = list(document.sections)
        split = max(len(sections) - window, 0)
        summarised = [
            s.model_copy(update={"content": s.summary or s.title}) for s in sections[:split]
        ]
        return document.model_copy(
            update={
                "sections": tuple(summarised + sections[split:]),
                "characters": tuple(characters),
                "world_entries": tuple(world),
            }
        )


def _character_line(character: Character) -> str:
    attrs = " ".join(f"{k}={v}" for k, v in character.attributes.items())
    return f"{character.name}: {character.notes} {attrs}".strip()


def _referenced_characters(characters, text: str) -> list[Character]:
    lowered = text.lower()
    return [c for c in characters if c.name and c.name.lower() in lowered]
