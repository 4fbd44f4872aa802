"""
Unit tests for notebook scene resolution.
"""
import pytest

from notechart.core.schemas import NotebookSnapshot
from notechart.services.scenes import resolve_scene, scene_from_name, scene_from_notes


@pytest.mark.unit
def test_declared_type_wins():
    notebook = NotebookSnapshot(notebook_id="nb", name="Mood diary", type="Finance")

    assert resolve_scene(notebook) == "finance"


@pytest.mark.unit
@pytest.mark.parametrize("name, scene", [
    ("我的心情日记", "mood"),
    ("Monthly budget", "finance"),
    ("AI reading list", "ai"),
    ("读书笔记", "study"),
    ("Project log", "work"),
    ("Travel journal", "life"),
    ("Painting ideas", None),
    ("", None),
])
def test_scene_from_name(name, scene):
    assert scene_from_name(name) == scene


@pytest.mark.unit
def test_scene_from_notes_mood(make_note):
    notes = [make_note(f"n{i}", content_text=text) for i, text in enumerate([
        "Felt anxious before the meeting",
        "Pretty happy with the weekend",
        "Cooked dinner",
        "Walked the dog",
    ])]

    assert scene_from_notes(notes) == "mood"


@pytest.mark.unit
def test_scene_from_notes_needs_enough_notes(make_note):
    notes = [make_note("n1", content_text="stocks fell"), make_note("n2", content_text="bought an ETF")]

    assert scene_from_notes(notes) is None


@pytest.mark.unit
def test_unknown_notebook_is_custom(make_note):
    notes = [make_note(f"n{i}", content_text="Groceries and errands") for i in range(5)]
    notebook = NotebookSnapshot(notebook_id="nb", name="Misc", notes=notes)

    assert resolve_scene(notebook) == "custom"
