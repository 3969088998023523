"""Editor agent: applies an improvement strategy with LLM rewrites."""

import uuid
from typing import Optional

from loguru import logger

from .base import BaseAgent
from ..budget import ContextBudgetManager
from ..config import LLMConfig
from ..models import (
    ActionFailure,
    ActionResult,
    Document,
    EditAction,
    ExecutionResult,
    ImprovementStrategy,
    InsertAction,
    RegenerateAction,
    Section,
)
from ..utils.text import detect_language, truncate_text

SYSTEM_EN = """You are a professional fiction editor revising a novel one chapter at a time. You:
- Keep every established fact about characters, places and power systems
- Preserve the author's voice, tense and point of view
- Change only what the instruction asks for
- Return the complete revised chapter as plain prose, with no headers or commentary"""

SYSTEM_ZH = """你是一位专业的小说编辑，逐章修改小说。你：
- 保留所有关于角色、地点和力量体系的既定事实
- 保持作者的语气、时态和视角
- 只修改指示要求的内容
- 以纯文本返回完整的修改后章节，不要标题或评论"""

INSERT_INSTRUCTIONS = (
    "\n\nReturn JSON with: title (string), content (string, the full chapter prose), "
    "summary (string, one or two sentences)."
)


def _story_context(view: Document, focus: Section) -> str:
    parts = [f"Title: {view.title}", f"Genre: {view.genre}"]
    if view.themes:
        parts.append("Themes: " + ", ".join(view.themes))
    if view.characters:
        parts.append("Characters:\n" + "\n".join(
            f"- {c.name}{' (protagonist)' if c.is_primary else ''}: {c.notes}"
            for c in view.characters
        ))
    if view.world_entries:
        parts.append("World rules:\n" + "\n".join(
            f"- [{e.category}] {e.title}: {truncate_text(e.content, 300)}"
            for e in view.world_entries
        ))
    neighbours = [s for s in view.sections if s.id != focus.id]
    for s in neighbours:
        label = "Previous chapter ending" if s.number < focus.number else "Next chapter opening"
        parts.append(f"{label}:\n{s.content}")
    return "\n\n".join(parts)


class GenerationExecutor(BaseAgent):
    """TransformationExecutor that rewrites and inserts sections through the LLM.

    Edits and regenerations run first, one call per section, each with the
    minimal context for that section. Insertions follow in descending position
    order so earlier positions stay valid. A failed action, including one whose
    prompt is over the context limit, is reported in ``failures`` and the rest
    of the strategy still runs.
    """

    def __init__(self, llm_config: LLMConfig, budget: Optional[ContextBudgetManager] = None):
        super().__init__("Editor", llm_config, budget)

    def execute(self, document: Document, strategy: ImprovementStrategy) -> ExecutionResult:
        result = ExecutionResult(
            strategy_id=strategy.id,
            category=strategy.category,
            updated_document=document,
        )
        current = document

        for action in strategy.edit_actions:
            current = self._run_action(result, current, action, self._edit)
        for action in strategy.regenerate_actions:
            current = self._run_action(result, current, action, self._regenerate)
        for action in sorted(strategy.insert_actions, key=lambda a: a.position, reverse=True):
            current = self._run_action(result, current, action, self._insert)

        result.updated_document = current
        logger.info(
            "{} strategy applied: {} edits, {} insertions, {} regenerations, {} failed",
            strategy.category.value,
            result.edits_applied,
            result.insertions_applied,
            result.regenerations_applied,
            result.actions_failed,
        )
        return result

    def _run_action(self, result: ExecutionResult, document: Document, action, apply) -> Document:
        try:
            updated, outcome = apply(document, action)
        except Exception as e:
            action_id = _action_id(action)
            number = getattr(action, "section_number", None)
            logger.warning(f"Action {action_id} failed: {e}")
            result.failures.append(ActionFailure(action_id=action_id, error=str(e), section_number=number))
            result.action_results.append(
                ActionResult(
                    action_id=action_id,
                    kind=action_id.split(":", 1)[0],
                    success=False,
                    section_number=number,
                    error=str(e),
                )
            )
            return document
        result.action_results.append(outcome)
        if outcome.kind == "edit":
            result.edits_applied += 1
        elif outcome.kind == "regenerate":
            result.regenerations_applied += 1
        else:
            result.insertions_applied += len(outcome.inserted_section_ids)
        return updated

    # ------------------------------------------------------------------

    def _rewrite(self, document: Document, section_id: str, instruction: str) -> tuple[Section, str]:
        section = document.section_by_id(section_id)
        if section is None:
            raise KeyError(f"Section {section_id} not found")
        context = self.budget.minimal_context_for_edit(section, document)
        language = detect_language(section.content)
        system = SYSTEM_ZH if language == "zh" else SYSTEM_EN
        prompt = (
            f"## Story Context\n{_story_context(context.document, section)}\n\n"
            f"## Chapter {section.number}: {section.title}\n{section.content}\n\n"
            f"## Instruction\n{instruction}\n\n"
            f"Rewrite the full chapter."
        )
        text = (self.call(system, prompt) or "").strip()
        if not text:
            raise ValueError("Empty response from model")
        return section, text

    def _edit(self, document: Document, action: EditAction):
        instruction = (
            f"{action.improvement_type.value.replace('_', ' ')} "
            f"({action.region.value} of the chapter): {action.description}"
        )
        section, text = self._rewrite(document, action.section_id, instruction)
        updated = document.replace_section_text(section.id, text)
        return updated, self._changed(_action_id(action), "edit", section, text)

    def _regenerate(self, document: Document, action: RegenerateAction):
        improvements = "\n".join(f"- {i}" for i in action.improvements)
        instruction = f"Regenerate this chapter from scratch. Reason: {action.reason}"
        if improvements:
            instruction += f"\nThe new version must:\n{improvements}"
        section, text = self._rewrite(document, action.section_id, instruction)
        updated = document.replace_section_text(section.id, text)
        return updated, self._changed(_action_id(action), "regenerate", section, text)

    def _insert(self, document: Document, action: InsertAction):
        anchor = document.section_by_number(action.position)
        view = (
            self.budget.minimal_context_for_edit(anchor, document).document
            if anchor is not None
            else self.budget.ensure_within(document, self.budget.config.minimal_tokens).document
        )
        language = detect_language(anchor.content if anchor else document.title)
        system = (SYSTEM_ZH if language == "zh" else SYSTEM_EN) + INSERT_INSTRUCTIONS

        new_sections = []
        for i in range(action.count):
            prompt = (
                f"## Story Context\n{_story_context(view, anchor) if anchor else view.title}\n\n"
                f"## Task\nWrite a new chapter to insert after chapter {action.position}"
                f"{f' (part {i + 1} of {action.count})' if action.count > 1 else ''}.\n"
                f"Purpose: {action.purpose}"
            )
            data = self.call_json(system, prompt)
            content = str(data.get("content", "")).strip()
            if not content:
                raise ValueError("Model returned no chapter content")
            new_sections.append(
                Section(
                    id=str(uuid.uuid4()),
                    number=0,
                    title=str(data.get("title", "")) or f"Inserted chapter {i + 1}",
                    content=content,
                    summary=data.get("summary") or None,
                )
            )

        updated = document.insert_sections_after(action.position, new_sections)
        result = ActionResult(
            action_id=_action_id(action),
            kind="insert",
            success=True,
            section_number=action.position,
            changes_applied=True,
            new_length=sum(len(s.content) for s in new_sections),
            inserted_section_ids=[s.id for s in new_sections],
        )
        return updated, result

    @staticmethod
    def _changed(action_id: str, kind: str, section: Section, text: str) -> ActionResult:
        return ActionResult(
            action_id=action_id,
            kind=kind,
            success=True,
            section_id=section.id,
            section_number=section.number,
            changes_applied=text != section.content,
            old_length=len(section.content),
            new_length=len(text),
        )


def _action_id(action) -> str:
    if isinstance(action, EditAction):
        return f"edit:{action.section_id}:{action.improvement_type.value}"
    if isinstance(action, RegenerateAction):
        return f"regenerate:{action.section_id}"
    return f"insert:{action.position}"
