import pytest
from pydantic import ValidationError

from novel_refiner.models import (
    Category,
    Character,
    Document,
    EditAction,
    ImprovementStrategy,
    InsertAction,
    RegenerateAction,
    Section,
    SectionSelector,
    StrategyType,
    filter_strategy,
)

from conftest import CALM_TEXT, edit_strategy, make_document, make_section


# ---------------------------------------------------------------------------
# Document
# ---------------------------------------------------------------------------


class TestDocument:
    """Tests for the immutable Document model."""

    def test_sections_are_sorted_by_number(self):
        """Sections are stored in number order."""
        doc = Document(sections=(make_section(3), make_section(1), make_section(2)))
        assert [s.number for s in doc.sections] == [1, 2, 3]

    def test_duplicate_numbers_rejected(self):
        """Two sections with one number are rejected."""
        with pytest.raises(ValidationError):
            Document(sections=(make_section(1), make_section(1, id="other")))

    def test_duplicate_ids_rejected(self):
        """Two sections with one id are rejected."""
        with pytest.raises(ValidationError):
            Document(sections=(make_section(1, id="a"), make_section(2, id="a")))

    def test_documents_are_frozen(self):
        """Assigning to a field raises."""
        doc = make_document(2)
        with pytest.raises(ValidationError):
            doc.title = "Another"

    def test_section_audit_is_read_only(self):
        """A section's audit mapping cannot be changed through any version."""
        source = {"pacing": "ok"}
        doc = make_document(1).with_sections([make_section(1, audit=source)])
        later = doc.replace_section_text("s1", "Changed.")

        source["pacing"] = "sagging"
        with pytest.raises(TypeError):
            later.sections[0].audit["pacing"] = "sagging"
        assert doc.sections[0].audit["pacing"] == "ok"
        assert later.sections[0].audit["pacing"] == "ok"

    def test_character_attributes_are_read_only(self):
        """Character attributes are copied and exposed read-only."""
        attributes = {"rank": "novice"}
        character = Character(id="c1", name="Mara", attributes=attributes)

        attributes["rank"] = "master"
        with pytest.raises(TypeError):
            character.attributes["rank"] = "master"
        assert character.attributes["rank"] == "novice"
        with pytest.raises(TypeError):
            Character(id="c2", name="Dren").attributes["rank"] = "novice"

    def test_read_only_mappings_serialize_as_plain_dicts(self, tmp_path):
        """Audit and attributes save and load like ordinary mappings."""
        doc = Document(
            sections=(make_section(1, audit={"pacing": "ok"}),),
            characters=(Character(id="c1", name="Mara", attributes={"rank": "novice"}),),
        )
        dumped = doc.model_dump(mode="json")
        assert dumped["sections"][0]["audit"] == {"pacing": "ok"}
        assert dumped["characters"][0]["attributes"] == {"rank": "novice"}

        path = tmp_path / "novel.yaml"
        doc.to_yaml(path)
        assert Document.from_file(path) == doc

    def test_replace_section_text(self):
        """Replacing text returns a new document and keeps the old one."""
        doc = make_document(3)
        updated = doc.replace_section_text("s2", "New text.")

        assert updated.section_by_id("s2").content == "New text."
        assert doc.section_by_id("s2").content == CALM_TEXT
        assert updated.sections[0] is doc.sections[0]

    def test_replace_unknown_section(self):
        """Replacing an unknown section raises KeyError."""
        with pytest.raises(KeyError):
            make_document(2).replace_section_text("missing", "x")

    def test_insert_renumbers(self):
        """Inserted sections are placed after the anchor and everything is renumbered."""
        doc = make_document(3)
        new = Section(id="x", number=0, title="Interlude", content="More.")

        updated = doc.insert_sections_after(1, [new])

        assert [s.id for s in updated.sections] == ["s1", "x", "s2", "s3"]
        assert [s.number for s in updated.sections] == [1, 2, 3, 4]
        assert [s.number for s in doc.sections] == [1, 2, 3]

    def test_insert_at_start(self):
        """Position 0 inserts before the first section."""
        new = Section(id="x", number=0, content="Prologue.")
        updated = make_document(2).insert_sections_after(0, [new])
        assert updated.sections[0].id == "x"

    def test_lookups(self, sample_document):
        """Sections can be found by id and by number."""
        assert sample_document.section_by_number(2).id == "s2"
        assert sample_document.section_by_id("nope") is None
        assert sample_document.primary_character.name == "Mara"

    def test_word_count(self):
        """Word count splits on whitespace."""
        assert make_section(1, "one two  three\nfour").word_count == 4

    def test_yaml_round_trip(self, sample_document, tmp_path):
        """A document saved as YAML loads back equal."""
        path = tmp_path / "novel.yaml"
        sample_document.to_yaml(path)
        assert Document.from_file(path) == sample_document

    def test_from_json_file(self, tmp_path):
        """JSON files load through the same reader."""
        path = tmp_path / "novel.json"
        path.write_text('{"title": "T", "sections": [{"id": "a", "number": 1, "content": "x"}]}')
        doc = Document.from_file(path)
        assert doc.title == "T"
        assert doc.sections[0].content == "x"


# ---------------------------------------------------------------------------
# Category
# ---------------------------------------------------------------------------


class TestCategory:
    """Tests for category names and aliases."""

    @pytest.mark.parametrize(
        "name, expected",
        [
            ("tension", Category.TENSION),
            ("Tension", Category.TENSION),
            ("themes", Category.THEME),
            ("psychology", Category.CHARACTER),
            ("devices", Category.LITERARY_DEVICES),
            ("literary-devices", Category.LITERARY_DEVICES),
            ("market readiness", Category.MARKET_READINESS),
            ("pacing", Category.STRUCTURE),
            (Category.PROSE, Category.PROSE),
        ],
    )
    def test_normalize(self, name, expected):
        """Names, aliases and spellings resolve to one category."""
        assert Category.normalize(name) is expected

    def test_unknown_category(self):
        """An unknown name raises ValueError."""
        with pytest.raises(ValueError, match="Unknown improvement category"):
            Category.normalize("sparkle")


# ---------------------------------------------------------------------------
# Strategy filtering
# ---------------------------------------------------------------------------


class TestFilterStrategy:
    """Tests for restricting a strategy to selected sections."""

    def test_edits_outside_allow_list_are_dropped(self):
        """Only edits on allowed sections remain."""
        strategy = edit_strategy("tension", 1, 3, 5, 6, 7, 9, 12, 15, 18, 20)

        filtered = filter_strategy(strategy, {5, 6, 7})

        assert [a.section_number for a in filtered.edit_actions] == [5, 6, 7]
        assert filtered.affected_sections == (5, 6, 7)
        assert strategy.affected_sections == (1, 3, 5, 6, 7, 9, 12, 15, 18, 20)

    def test_ids_also_allow_actions(self):
        """Section ids allow actions as well as numbers."""
        strategy = edit_strategy("tension", 2, 4)
        filtered = filter_strategy(strategy, set(), {"s4"})
        assert [a.section_id for a in filtered.edit_actions] == ["s4"]
        # Affected numbers stay within the allowed numbers.
        assert filtered.affected_sections == ()

    def test_inserts_adjacent_to_allowed_sections_survive(self):
        """Insertions next to an allowed section are kept."""
        strategy = ImprovementStrategy(
            category=Category.STRUCTURE,
            strategy_type=StrategyType.INSERT,
            insert_actions=(InsertAction(position=4), InsertAction(position=7), InsertAction(position=9)),
        )

        filtered = filter_strategy(strategy, {5, 6, 7})

        assert [a.position for a in filtered.insert_actions] == [4, 7]
        assert filtered.strategy_type is StrategyType.INSERT

    def test_regenerations_are_filtered(self):
        """Regenerations outside the selection are dropped."""
        strategy = ImprovementStrategy(
            category=Category.THEME,
            strategy_type=StrategyType.HYBRID,
            edit_actions=(EditAction(section_id="s1", section_number=1),),
            regenerate_actions=(RegenerateAction(section_id="s6", section_number=6),),
        )

        filtered = filter_strategy(strategy, {6})

        assert filtered.edit_actions == ()
        assert filtered.strategy_type is StrategyType.REGENERATE
        assert filtered.affected_sections == (6,)

    def test_nothing_allowed(self):
        """An empty allow list leaves an empty strategy."""
        filtered = filter_strategy(edit_strategy("tension", 1, 2), set())
        assert filtered.is_empty


# ---------------------------------------------------------------------------
# Section selection
# ---------------------------------------------------------------------------


class TestSectionSelector:
    """Tests for parsing and resolving section selectors."""

    def test_parse_range(self):
        """A range expands to every number in it."""
        selector = SectionSelector.parse("3-7")
        assert (selector.range.start, selector.range.end) == (3, 7)

    def test_parse_list(self):
        """A comma list gives those numbers."""
        assert SectionSelector.parse("1, 4,9").numbers == [1, 4, 9]

    def test_parse_single_number(self):
        """A single number selects one section."""
        assert SectionSelector.parse("2").numbers == [2]

    def test_reversed_range_rejected(self):
        """A range whose end is before its start is rejected."""
        with pytest.raises(ValidationError):
            SectionSelector.parse("7-3")

    def test_resolve_range(self):
        """A range resolves to ids and numbers present in the document."""
        ids, numbers = SectionSelector.parse("3-5").resolve(make_document(10))
        assert ids == {"s3", "s4", "s5"}
        assert numbers == {3, 4, 5}

    def test_ids_take_precedence(self):
        """Explicit ids win over numbers."""
        selector = SectionSelector(ids=["s2"], numbers=[5])
        assert selector.resolve(make_document(6)) == ({"s2"}, {2})

    def test_unknown_numbers_resolve_to_nothing(self):
        """Numbers missing from the document resolve to nothing."""
        assert SectionSelector(numbers=[40]).resolve(make_document(3)) == (set(), set())

    def test_empty_selector(self):
        """An empty selector resolves to nothing."""
        assert SectionSelector().resolve(make_document(3)) == (set(), set())
