"""
Tests for policy overrides loading and hot reload.
"""
import json
import pytest
from pydantic import ValidationError

from notechart.core.errors import PolicyLoadError
from notechart.core.policy import GatePolicy, PolicyOverrides, PolicyStore, load_policy


@pytest.mark.unit
def test_builtin_defaults():
    policy = PolicyOverrides()

    assert policy.gates == GatePolicy()
    assert policy.gates.pie_topn == 8
    assert policy.gates.line_min_points == 5
    assert policy.gates.heatmap_min_density == 0.1
    assert policy.gates.bar_max_categories == 30
    assert policy.scene_default("finance").chart_type == "pie"
    assert policy.scene_default("custom") is None


@pytest.mark.unit
def test_policy_is_immutable():
    policy = PolicyOverrides()
    with pytest.raises(ValidationError):
        policy.version = "other"


@pytest.mark.unit
def test_preferences_fall_back_to_default_scene():
    policy = PolicyOverrides()

    assert policy.preferences_for("finance", "metric")[0] == "amount"
    assert policy.preferences_for("custom", "metric") == policy.preferences_for("default", "metric")


@pytest.mark.unit
def test_load_yaml_document(tmp_path):
    """Keys left out of the document keep their built-in values."""
    path = tmp_path / "policy.yaml"
    path.write_text(
        "version: team-2\n"
        "fixed_vocabularies:\n"
        "  mood: [happy, calm, sad]\n"
        "gates:\n"
        "  pie_topn: 6\n",
        encoding="utf-8",
    )

    policy = load_policy(path)

    assert policy.version == "team-2"
    assert policy.vocabulary_for("mood") == ["happy", "calm", "sad"]
    assert policy.gates.pie_topn == 6
    assert policy.gates.line_min_points == 5


@pytest.mark.unit
def test_load_json_document(tmp_path):
    path = tmp_path / "policy.json"
    path.write_text(json.dumps({"version": "json-1", "min_inference_confidence": 0.7}), encoding="utf-8")

    policy = load_policy(path)

    assert policy.version == "json-1"
    assert policy.min_inference_confidence == 0.7


@pytest.mark.unit
@pytest.mark.parametrize("content", [
    "gates:\n  pie_min_top_share: 3\n",
    "unknown_key: 1\n",
    "- just\n- a list\n",
    "version: [unclosed\n",
])
def test_invalid_documents_raise(tmp_path, content):
    path = tmp_path / "policy.yaml"
    path.write_text(content, encoding="utf-8")

    with pytest.raises(PolicyLoadError):
        load_policy(path)


@pytest.mark.unit
def test_missing_file_raises(tmp_path):
    with pytest.raises(PolicyLoadError):
        load_policy(tmp_path / "absent.yaml")


@pytest.mark.unit
def test_fingerprint_tracks_content():
    base = PolicyOverrides()
    changed = PolicyOverrides(gates=GatePolicy(pie_topn=5))

    assert base.fingerprint() == PolicyOverrides().fingerprint()
    assert base.fingerprint() != changed.fingerprint()


@pytest.mark.unit
def test_store_reload_swaps_policy(tmp_path):
    path = tmp_path / "policy.yaml"
    path.write_text("version: v2\n", encoding="utf-8")
    store = PolicyStore(path=str(path))

    assert store.current().version == "builtin-1"
    store.reload()
    assert store.current().version == "v2"


@pytest.mark.unit
def test_store_keeps_previous_policy_on_failure(tmp_path):
    path = tmp_path / "policy.yaml"
    path.write_text("version: v2\n", encoding="utf-8")
    store = PolicyStore(path=str(path))
    store.reload()

    path.write_text("gates:\n  pie_topn: 0\n", encoding="utf-8")
    with pytest.raises(PolicyLoadError):
        store.reload()

    assert store.current().version == "v2"


@pytest.mark.unit
def test_store_without_path_cannot_reload():
    with pytest.raises(PolicyLoadError):
        PolicyStore().reload()
