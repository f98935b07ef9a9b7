"""Prompt text and response parsing shared by the HTTP providers."""
from __future__ import annotations

import json
import re
from typing import Any, Dict, List, Optional

from homework_validator import config

ANALYZE_SYSTEM_PROMPT = (
    "You are a teaching assistant preparing an interview that checks whether a student understands "
    "the assignment they submitted. Read the essay or report and split it into at most five topic blocks. "
    "For each block give a short title and a 2-3 sentence description of the core content it covers. "
    'Return JSON only, in the form {"topics": [{"id": "t1", "title": "...", "description": "..."}]}. '
    "Do not write a summary and do not add any other text."
)

QUESTION_SYSTEM_PROMPT = (
    "You are a teaching assistant, not an examiner. You check whether the student understands the "
    "assignment they wrote.\n"
    "Rules:\n"
    "- Be polite and supportive; help the student explain rather than pressuring them.\n"
    "- Ask exactly one question at a time.\n"
    "- Ground every question in content that actually appears in the assignment text, the topic "
    "description, or the previous exchange. Do not invent concepts, cases, theories or background "
    "that the assignment does not mention.\n"
    "- Do not ask far-fetched hypotheticals or about issues the assignment never raises.\n"
    "- Ask the student to restate claims from the assignment in their own words, or to explain the "
    "reasons, evidence or meaning behind them.\n"
    "- Judge internally whether an answer matches the assignment. Never ask the student to go and "
    "check the assignment themselves."
)

SPOKEN_QUESTION_HINT = (
    "The question will be read aloud. Keep it to one or two short spoken sentences without lists or markup."
)

SUMMARY_SYSTEM_PROMPT = (
    "You assess how well a student understands their own assignment and how much ownership they "
    "show over it. Read the conversation and infer whether the student wrote the assignment, or at "
    "least read and revised an AI-generated draft carefully.\n"
    "Look at whether the student:\n"
    "- explains the main claims and structure in their own words,\n"
    "- brings up concrete details from the assignment (figures, examples, quotes, definitions),\n"
    "- only repeats generic statements or actually uses the specifics of the text,\n"
    "- stays logically consistent with the assignment or contradicts it.\n"
    "Important:\n"
    "- Lines starting with 'AI:' are the interviewer and are not evaluated.\n"
    "- Only lines starting with 'Student:' are evaluated.\n"
    "- A student who attempted more questions should be judged slightly more favorably than one who "
    "answered very briefly, even if some answers were imperfect.\n"
    "- If the student said nothing, leave strengths empty and state in overallComment that the "
    "understanding could not be assessed because there were no answers.\n"
    'Return JSON: {"strengths": ["..."], "weaknesses": ["..."], "overallComment": "..."}'
)

FALLBACK_QUESTION = "Could you explain in more detail why you wrote this part the way you did?"


def _speaker_label(turn: Dict[str, str]) -> str:
    return "AI" if turn.get("speaker") == "system" else "Student"


def build_question_input(
    topic: Dict[str, Any],
    document_text: str,
    prior_turns: List[Dict[str, str]],
    latest_answer: str,
) -> str:
    doc = (document_text or "")[: config.EXCERPT_CHAR_LIMIT] or "(no text)"
    history = "\n".join(f"{_speaker_label(t)}: {t.get('text', '')}" for t in prior_turns) or "(none)"
    content = (
        f"Assignment text (excerpt):\n{doc}\n\n"
        f"Current topic: {topic.get('title', '')}\n{topic.get('description', '')}\n\n"
        f"Previous Q&A:\n{history}\n\n"
        f"Student's latest answer:\n{latest_answer or '(none)'}"
    )
    return content[: config.EXCERPT_CHAR_LIMIT + 1000]


def build_summary_input(transcript: str, topics: List[Dict[str, Any]], document_text: str) -> str:
    doc = (document_text or "")[: config.EXCERPT_CHAR_LIMIT]
    topic_lines = "\n".join(f"{t.get('title', '')}: {t.get('description', '')}" for t in topics or [])
    content = f"Assignment text (excerpt):\n{doc}\n\nTopics:\n{topic_lines}\n\nConversation log:\n{transcript}"
    return content[: config.EXCERPT_CHAR_LIMIT + 1000]


def parse_json_relaxed(text: Optional[str]) -> Optional[Dict[str, Any]]:
    """Parse a JSON object out of model output.

    Tolerates markdown code fences and prose around the object, and retries once
    with control characters stripped.
    """
    if not text:
        return None
    cleaned = text.strip()
    try:
        obj = json.loads(cleaned)
        return obj if isinstance(obj, dict) else None
    except json.JSONDecodeError:
        pass
    cleaned = re.sub(r"^```(?:json)?", "", cleaned, flags=re.IGNORECASE)
    cleaned = re.sub(r"```$", "", cleaned).strip()
    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start == -1 or end <= start:
        return None
    sliced = cleaned[start : end + 1]
    for candidate in (sliced, re.sub(r"[\x00-\x1f]+", "", sliced)):
        try:
            obj = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        return obj if isinstance(obj, dict) else None
    return None


def normalize_topics(parsed: Optional[Dict[str, Any]]) -> List[Dict[str, str]]:
    """Keep at most MAX_TOPICS well-formed topics. A payload that is not an object raises ValueError."""
    if parsed is None:
        return []
    if not isinstance(parsed, dict):
        raise ValueError(f"analysis payload must be an object, got {type(parsed).__name__}")
    raw = parsed.get("topics")
    if not isinstance(raw, list):
        return []
    topics: List[Dict[str, str]] = []
    for idx, t in enumerate(raw[: config.MAX_TOPICS]):
        if not isinstance(t, dict):
            continue
        topics.append({
            "id": str(t.get("id") or f"t{idx + 1}"),
            "title": str(t.get("title") or f"Topic {idx + 1}"),
            "description": str(t.get("description") or ""),
        })
    return topics
