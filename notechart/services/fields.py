"""
Field universe assembly.

Merges template field declarations, the fixed system fields and fields
declared as missing by the inference stage into one name -> FieldDefinition
mapping. Also owns raw value lookup for a (note, field) pair.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from notechart.core.schemas import FieldDefinition, MissingField, Note, TemplateField

logger = logging.getLogger(__name__)

WEEKDAY_NAMES = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]
LENGTH_BUCKETS = ["short", "medium", "long"]
SHORT_NOTE_CHARS = 120
MEDIUM_NOTE_CHARS = 400

# name, role, data_type
SYSTEM_FIELDS: List[Tuple[str, str, str]] = [
    ("created_at", "dimension", "date"),
    ("updated_at", "dimension", "date"),
    ("source", "dimension", "category"),
    ("author", "dimension", "category"),
    ("weekday", "dimension", "category"),
    ("length_bucket", "dimension", "category"),
]

_DATE_TYPES = {"date", "time", "datetime"}
_NUMBER_TYPES = {"number", "metric", "rating", "score", "chart"}
_CATEGORY_TYPES = {"select", "radio", "tag", "tags", "category", "mood", "checkbox"}


def map_template_type(field_type: Optional[str]) -> Tuple[str, str]:
    """
    Map a template field type to (role, data_type).

    Unknown types are treated as free text dimensions.
    """
    normalized = (field_type or "").strip().lower()
    if normalized in _DATE_TYPES:
        return "dimension", "date"
    if normalized in _NUMBER_TYPES:
        return "metric", "number"
    if normalized in _CATEGORY_TYPES:
        return "dimension", "category"
    return "dimension", "text"


def to_utc(value: datetime) -> datetime:
    """Naive datetimes are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def length_bucket(text: Optional[str]) -> str:
    length = len(text or "")
    if length < SHORT_NOTE_CHARS:
        return "short"
    if length < MEDIUM_NOTE_CHARS:
        return "medium"
    return "long"


def note_value(note: Note, field_name: str, derived: Optional[Dict[str, Dict[str, Any]]] = None) -> Any:
    """
    Raw value of a field for one note.

    System fields are computed from note metadata; derived values (from the
    Derive-Fields stage) are consulted before the note's own field values.
    """
    if field_name == "created_at":
        return note.created_at
    if field_name == "updated_at":
        return note.updated_at
    if field_name == "source":
        return note.source
    if field_name == "author":
        return note.author
    if field_name == "weekday":
        return WEEKDAY_NAMES[to_utc(note.created_at).weekday()] if note.created_at else None
    if field_name == "length_bucket":
        return length_bucket(note.content_text)

    if derived and field_name in derived and note.note_id in derived[field_name]:
        return derived[field_name][note.note_id]
    return note.fields.get(field_name)


def is_missing(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str) and not value.strip():
        return True
    if isinstance(value, (list, tuple, set)) and len(value) == 0:
        return True
    try:
        return value != value  # NaN
    except Exception:
        return False


def _first_example(notes: Iterable[Note], field_name: str) -> Any:
    for note in notes:
        value = note_value(note, field_name)
        if not is_missing(value):
            return value.isoformat() if hasattr(value, "isoformat") else value
    return None


def build_field_universe(
    template_fields: List[TemplateField],
    missing_fields: Optional[List[MissingField]] = None,
    notes: Optional[List[Note]] = None,
) -> Dict[str, FieldDefinition]:
    """
    Build the field universe for one analysis.

    Args:
        template_fields: Notebook template declarations
        missing_fields: Fields declared by the inference stage (config mode)
        notes: Sample notes, used to fill `example`

    Returns:
        Mapping of field name to FieldDefinition
    """
    notes = notes or []
    universe: Dict[str, FieldDefinition] = {}

    # 1. Notebook fields
    for template_field in template_fields:
        role, data_type = map_template_type(template_field.type)
        universe[template_field.name] = FieldDefinition(
            name=template_field.name,
            role=role,
            data_type=data_type,
            source="notebook",
            example=_first_example(notes, template_field.name),
        )

    # 2. System fields (last writer wins over notebook fields)
    for name, role, data_type in SYSTEM_FIELDS:
        if name in universe:
            logger.debug(f"System field '{name}' replaces notebook field of the same name")
        universe[name] = FieldDefinition(
            name=name,
            role=role,
            data_type=data_type,
            source="system",
            example=_first_example(notes, name),
        )

    # 3. AI-declared fields: new names only, unless override is set
    for missing in missing_fields or []:
        if missing.name in universe and not missing.override:
            logger.debug(f"Ignoring AI field '{missing.name}': shadows existing field without override")
            continue
        universe[missing.name] = FieldDefinition(
            name=missing.name,
            role=missing.role,
            data_type=missing.data_type,
            source="ai",
            example=missing.range_or_values[0] if missing.range_or_values else None,
            override=missing.override,
            description=missing.description,
        )

    return universe
