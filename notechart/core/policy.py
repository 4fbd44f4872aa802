"""
Process-wide policy overrides.

PolicyOverrides is an immutable value: components receive it as an explicit
argument and a reload swaps the whole object under a lock. Documents are
JSON or YAML (YAML is a JSON superset, so both go through yaml.safe_load).
"""
import hashlib
import logging
from pathlib import Path
from threading import Lock
from typing import Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from notechart.core.errors import PolicyLoadError
from notechart.core.schemas import Aggregation, ChartType, TimeGranularity

logger = logging.getLogger(__name__)

SemanticRole = Literal["time", "dimension", "metric"]
DEFAULT_PREFERENCE_SCENE = "default"


class GatePolicy(BaseModel):
    """Quality gate thresholds."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    field_max_missing_rate: float = Field(default=0.4, ge=0.0, le=1.0)
    pie_topn: int = Field(default=8, ge=1)
    pie_sparse_cardinality: int = Field(default=12, ge=1)
    pie_min_top_share: float = Field(default=0.15, ge=0.0, le=1.0)
    line_min_points: int = Field(default=5, ge=1)
    heatmap_min_density: float = Field(default=0.1, ge=0.0, le=1.0)
    heatmap_topn: int = Field(default=10, ge=1)
    bar_max_categories: int = Field(default=30, ge=1)


class SceneDefault(BaseModel):
    """Default core question and chart shape for one scene."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    core_question: str
    chart_type: ChartType
    aggregation: Aggregation = "count"
    time_granularity: TimeGranularity = "day"


def _default_scene_questions() -> Dict[str, SceneDefault]:
    return {
        "mood": SceneDefault(
            core_question="How has my mood changed over time?",
            chart_type="line", aggregation="avg", time_granularity="day",
        ),
        "life": SceneDefault(
            core_question="What do I record most in daily life?",
            chart_type="pie", aggregation="count",
        ),
        "study": SceneDefault(
            core_question="How much have I studied each week?",
            chart_type="line", aggregation="sum", time_granularity="week",
        ),
        "work": SceneDefault(
            core_question="Where does my work time go across projects?",
            chart_type="bar", aggregation="sum",
        ),
        "finance": SceneDefault(
            core_question="Which categories take up most of my spending?",
            chart_type="pie", aggregation="sum",
        ),
        "ai": SceneDefault(
            core_question="Which topics show up most in my notes?",
            chart_type="bar", aggregation="count",
        ),
    }


def _default_field_preferences() -> Dict[str, Dict[str, List[str]]]:
    return {
        DEFAULT_PREFERENCE_SCENE: {
            "time": ["date", "created_at", "日期", "time"],
            "dimension": ["category", "type", "tag", "分类", "标签"],
            "metric": ["value", "amount", "score", "count"],
        },
        "mood": {
            "time": ["date", "created_at"],
            "dimension": ["mood", "emotion", "心情", "weather"],
            "metric": ["mood_score", "score", "rating", "energy"],
        },
        "finance": {
            "time": ["date", "paid_at", "created_at"],
            "dimension": ["category", "merchant", "account", "分类"],
            "metric": ["amount", "金额", "price", "cost"],
        },
        "study": {
            "time": ["date", "created_at"],
            "dimension": ["subject", "course", "topic", "科目"],
            "metric": ["duration", "minutes", "hours", "时长"],
        },
        "work": {
            "time": ["date", "created_at"],
            "dimension": ["project", "client", "status", "项目"],
            "metric": ["hours", "duration", "effort"],
        },
    }


class PolicyOverrides(BaseModel):
    """Immutable process-wide configuration document."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    version: str = "builtin-1"
    default_core_question_by_scene: Dict[str, SceneDefault] = Field(default_factory=_default_scene_questions)
    fixed_vocabularies: Dict[str, List[str]] = Field(default_factory=dict)
    field_name_preferences: Dict[str, Dict[SemanticRole, List[str]]] = Field(
        default_factory=_default_field_preferences
    )
    gates: GatePolicy = Field(default_factory=GatePolicy)
    min_inference_confidence: float = Field(default=0.5, ge=0.0, le=1.0)

    def fingerprint(self) -> str:
        """Content hash used in cache keys; changes whenever any value changes."""
        return hashlib.sha256(self.model_dump_json().encode()).hexdigest()

    def scene_default(self, scene: str) -> Optional[SceneDefault]:
        return self.default_core_question_by_scene.get(scene)

    def preferences_for(self, scene: str, role: str) -> List[str]:
        """Preferred field names for a role; the scene list wins over the default list."""
        scene_prefs = self.field_name_preferences.get(scene, {})
        if role in scene_prefs:
            return list(scene_prefs[role])
        return list(self.field_name_preferences.get(DEFAULT_PREFERENCE_SCENE, {}).get(role, []))

    def vocabulary_for(self, field_name: str) -> Optional[List[str]]:
        return self.fixed_vocabularies.get(field_name)


def load_policy(path) -> PolicyOverrides:
    """
    Load a PolicyOverrides document from a JSON or YAML file.

    Keys omitted from the document keep their built-in defaults.

    Raises:
        PolicyLoadError: the file is unreadable, unparsable or invalid
    """
    policy_path = Path(path)
    try:
        with policy_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except (OSError, yaml.YAMLError) as e:
        raise PolicyLoadError(f"Cannot read policy document {policy_path}: {e}") from e

    if not isinstance(data, dict):
        raise PolicyLoadError(f"Policy document {policy_path} must be a mapping")

    try:
        return PolicyOverrides.model_validate(data)
    except ValidationError as e:
        raise PolicyLoadError(f"Invalid policy document {policy_path}: {e}") from e


class PolicyStore:
    """Holds the active PolicyOverrides and swaps it atomically."""

    def __init__(self, policy: Optional[PolicyOverrides] = None, path: Optional[str] = None):
        self._lock = Lock()
        self._policy = policy or PolicyOverrides()
        self.path = path

    def current(self) -> PolicyOverrides:
        with self._lock:
            return self._policy

    def replace(self, policy: PolicyOverrides) -> PolicyOverrides:
        with self._lock:
            previous = self._policy
            self._policy = policy
        logger.info(f"Policy replaced: {previous.version} -> {policy.version}")
        return policy

    def reload(self, path: Optional[str] = None) -> PolicyOverrides:
        """
        Reload from a document. On failure the previous policy stays active.

        Raises:
            PolicyLoadError: no path configured or the document is invalid
        """
        target = path or self.path
        if not target:
            raise PolicyLoadError("No policy path configured (set POLICY_PATH)")
        policy = load_policy(target)
        self.path = target
        return self.replace(policy)


_policy_store: Optional[PolicyStore] = None


def get_policy_store() -> PolicyStore:
    """Get the process-wide policy store (singleton pattern)."""
    global _policy_store
    if _policy_store is None:
        from notechart.core.config import get_settings

        settings = get_settings()
        store = PolicyStore(path=settings.policy_path)
        if settings.policy_path:
            try:
                store.reload()
            except PolicyLoadError as e:
                logger.error(f"Falling back to built-in policy: {e}")
        _policy_store = store
    return _policy_store


def reset_policy_store() -> None:
    """Drop the singleton (useful for testing)."""
    global _policy_store
    _policy_store = None
