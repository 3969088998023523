"""Document data models: the novel under optimization."""

from pathlib import Path
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator


def _read_only(value: Optional[Mapping]) -> Optional[Mapping]:
    # A private copy behind a read-only view; versions share it safely.
    return None if value is None else MappingProxyType(dict(value))


class Section(BaseModel):
    """One addressable unit of the document (a chapter)."""

    model_config = ConfigDict(frozen=True)

    id: str
    number: int = Field(ge=0)
    title: str = ""
    content: str = ""
    summary: Optional[str] = None
    audit: Optional[Mapping[str, Any]] = None

    @field_validator("audit")
    @classmethod
    def _freeze_audit(cls, audit: Optional[Mapping[str, Any]]) -> Optional[Mapping[str, Any]]:
        return _read_only(audit)

    @field_serializer("audit")
    def _dump_audit(self, audit: Optional[Mapping[str, Any]]) -> Optional[dict[str, Any]]:
        return None if audit is None else dict(audit)

    @property
    def word_count(self) -> int:
        return len(self.content.split())


class Character(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    attributes: Mapping[str, str] = Field(default_factory=dict, validate_default=True)
    notes: str = ""
    is_primary: bool = False

    @field_validator("attributes")
    @classmethod
    def _freeze_attributes(cls, attributes: Mapping[str, str]) -> Mapping[str, str]:
        return _read_only(attributes)

    @field_serializer("attributes")
    def _dump_attributes(self, attributes: Mapping[str, str]) -> dict[str, str]:
        return dict(attributes)


class WorldEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    category: str = ""
    title: str = ""
    content: str = ""


class Document(BaseModel):
    """An immutable novel: ordered sections plus character and world records.

    Every modifying helper returns a new Document; instances are never changed
    in place, so holding a reference to one is as good as holding a copy.
    """

    model_config = ConfigDict(frozen=True)

    title: str = ""
    genre: str = ""
    themes: tuple[str, ...] = ()
    sections: tuple[Section, ...] = ()
    characters: tuple[Character, ...] = ()
    world_entries: tuple[WorldEntry, ...] = ()

    @field_validator("sections")
    @classmethod
    def _ordered_unique_numbers(cls, sections: tuple[Section, ...]) -> tuple[Section, ...]:
        ordered = tuple(sorted(sections, key=lambda s: s.number))
        numbers = [s.number for s in ordered]
        if len(set(numbers)) != len(numbers):
            raise ValueError(f"Section numbers must be unique, got {numbers}")
        ids = [s.id for s in ordered]
        if len(set(ids)) != len(ids):
            raise ValueError("Section ids must be unique")
        return ordered

    @classmethod
    def from_file(cls, path: Path) -> "Document":
        """Load a document from a YAML or JSON file."""
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
        return cls.model_validate(data or {})

    def to_yaml(self, path: Path):
        with open(path, "w", encoding="utf-8") as f:
            yaml.safe_dump(
                self.model_dump(mode="json"), f, allow_unicode=True, sort_keys=False
            )

    @property
    def primary_character(self) -> Optional[Character]:
        return next((c for c in self.characters if c.is_primary), None)

    def section_by_id(self, section_id: str) -> Optional[Section]:
        return next((s for s in self.sections if s.id == section_id), None)

    def section_by_number(self, number: int) -> Optional[Section]:
        return next((s for s in self.sections if s.number == number), None)

    def with_sections(self, sections: Iterable[Section]) -> "Document":
        # Rebuilt through the constructor so ordering and uniqueness are re-checked.
        data = dict(self)
        data["sections"] = tuple(sections)
        return type(self)(**data)

    def replace_section_text(self, section_id: str, content: str) -> "Document":
        """Return a copy with one section's content replaced.

        Raises KeyError if no section has the given id.
        """
        if self.section_by_id(section_id) is None:
            raise KeyError(section_id)
        return self.with_sections(
            s.model_copy(update={"content": content}) if s.id == section_id else s
            for s in self.sections
        )

    def insert_sections_after(self, position: int, new_sections: list[Section]) -> "Document":
        """Insert sections after section ``position`` and renumber 1..n.

        ``position`` 0 inserts at the start. Existing ids are preserved.
        """
        before = [s for s in self.sections if s.number <= position]
        after = [s for s in self.sections if s.number > position]
        merged = before + list(new_sections) + after
        return self.with_sections(
            s.model_copy(update={"number": i}) for i, s in enumerate(merged, start=1)
        )
