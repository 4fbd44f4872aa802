"""
Scene resolution for a notebook.

A scene is a coarse tag (mood, life, study, work, finance, ai, custom) that
selects the default core question and the field name preferences.
"""
import re
from typing import Iterable, List, Optional, Tuple

from notechart.core.schemas import Note, NotebookSnapshot

KNOWN_SCENES = ("mood", "life", "study", "work", "finance", "ai")
CUSTOM_SCENE = "custom"

NOTE_SAMPLE_SIZE = 50
MIN_NOTES_FOR_INFERENCE = 3
MOOD_HIT_RATE = 0.3
TOPIC_HIT_RATE = 0.25

# Checked in order; the first scene with a hit wins.
NAME_KEYWORDS: List[Tuple[str, List[str]]] = [
    ("mood", ["心情", "情绪", "mood", "feelings", "emotion"]),
    ("finance", ["财经", "金融", "投资", "股票", "基金", "加密", "crypto", "finance", "invest", "stocks", "budget", "expenses"]),
    ("ai", ["模型", "大模型", "ai", "a.i", "llm"]),
    ("study", ["学习", "读书", "课程", "study", "course", "reading"]),
    ("work", ["工作", "项目", "okr", "work", "project"]),
    ("life", ["生活", "日记", "随记", "life", "diary", "journal"]),
]

MOOD_KEYWORDS = ["心情", "情绪", "焦虑", "开心", "难过", "抑郁", "压力", "崩溃", "低落", "放松",
                 "anxious", "happy", "sad", "stressed", "depressed", "relaxed", "mood"]
FINANCE_KEYWORDS = ["美股", "a股", "港股", "基金", "etf", "fomc", "加息", "降息", "通胀", "cpi", "pmi",
                    "财报", "收益", "利率", "央行", "美联储", "比特币", "btc", "eth", "crypto", "大盘",
                    "纳指", "标普", "道指", "stocks", "inflation", "earnings", "interest rate"]
AI_KEYWORDS = ["openai", "claude", "gpt", "llm", "大模型", "agent", "推理", "多模态", "benchmark",
               "prompt", "rag", "token", "api", "发布", "模型", "微调", "sft", "fine-tune"]


def _contains(text: str, keyword: str) -> bool:
    """ASCII keywords match whole words; other scripts match as substrings."""
    if keyword.isascii():
        return re.search(rf"(?<![a-z0-9]){re.escape(keyword)}(?![a-z0-9])", text) is not None
    return keyword in text


def _has_any(text: str, keywords: Iterable[str]) -> bool:
    return any(_contains(text, keyword) for keyword in keywords)


def note_text(note: Note) -> str:
    """Title, body and string field values joined, lowercased."""
    parts = [note.title, note.content_text]
    for value in note.fields.values():
        if isinstance(value, str):
            parts.append(value)
        elif isinstance(value, dict):
            inner = value.get("value") or value.get("text")
            if isinstance(inner, str):
                parts.append(inner)
    return " ".join(part for part in parts if part).lower()


def scene_from_name(name: Optional[str]) -> Optional[str]:
    lowered = (name or "").strip().lower()
    if not lowered:
        return None
    for scene, keywords in NAME_KEYWORDS:
        if _has_any(lowered, keywords):
            return scene
    return None


def scene_from_notes(notes: List[Note]) -> Optional[str]:
    total = mood_hits = finance_hits = ai_hits = 0
    for note in notes[:NOTE_SAMPLE_SIZE]:
        text = note_text(note)
        if not text:
            continue
        total += 1
        if _has_any(text, MOOD_KEYWORDS):
            mood_hits += 1
        if _has_any(text, FINANCE_KEYWORDS):
            finance_hits += 1
        if _has_any(text, AI_KEYWORDS):
            ai_hits += 1

    if total < MIN_NOTES_FOR_INFERENCE:
        return None
    if mood_hits / total >= MOOD_HIT_RATE:
        return "mood"
    if finance_hits / total >= TOPIC_HIT_RATE:
        return "finance"
    if ai_hits / total >= TOPIC_HIT_RATE:
        return "ai"
    return None


def resolve_scene(notebook: NotebookSnapshot, notes: Optional[List[Note]] = None) -> str:
    """Notebook type if known, else inferred from the name, else from note text, else 'custom'."""
    declared = (notebook.type or "").strip().lower()
    if declared in KNOWN_SCENES:
        return declared
    notes = notebook.notes if notes is None else notes
    return scene_from_name(notebook.name) or scene_from_notes(notes) or CUSTOM_SCENE
