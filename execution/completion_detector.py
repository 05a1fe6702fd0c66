"""Completion detection for substep conversations.

Inspects recent chat messages and the current substep's acceptance
criteria to suggest whether the substep looks finished. When the LLM is
available it grades the conversation against the criteria; otherwise, or
when the LLM fails or returns unusable JSON, a deterministic regex and
keyword heuristic is used. The result is advisory: callers still go
through the state machine, which applies its own validation.
"""

import json
import logging
import re
from dataclasses import asdict, dataclass, field

from execution.llm_client import LLMClientError, LLMUnavailableError, generate, is_available

logger = logging.getLogger(__name__)

READY_TO_COMPLETE = "ready_to_complete"
SUGGEST_COMPLETE = "suggest_complete"
NO_RECOMMENDATION = "none"

READY_THRESHOLD = 80
SUGGEST_THRESHOLD = 70
RECENT_MESSAGE_WINDOW = 5

NUDGE_MESSAGE = "Looks ready. Press Complete when you agree."

# Explicit requests to complete the current substep
EXPLICIT_COMPLETION_PATTERNS = [
    r"\bmark (this |the )?(substep |step )?(as )?(complete|completed|done)\b",
    r"\bi('m| am) (done|finished)\b",
    r"\bready to move on\b",
    r"\b(go to|on to|move to) the next (step|substep)\b",
    r"\bcomplete (this|the) (substep|step)\b",
]

POSITIVE_SIGNALS = [
    (r"\b(completed|finished|done with)\b", "User indicated work is complete"),
    (r"\b(uploaded|attached|shared)\b", "User uploaded deliverable"),
    (r"\b(implemented|built|created|wrote|written)\b", "User completed implementation"),
    (r"\b(tested|verified|confirmed)\b", "User tested the work"),
    (r"\b(ready|prepared)\b", "User indicates readiness"),
]

NEGATIVE_SIGNALS = [
    (r"\b(stuck|blocked|issue|problem|error)\b", "User experiencing difficulties"),
    (r"\b(not sure|unclear|confused)\b", "User needs clarification"),
    (r"\b(haven't|have not|didn't|did not|not yet)\b", "Work not yet complete"),
]

COMPLETION_SYSTEM_PROMPT = (
    "You are a supportive senior developer helping a builder make progress from zero to one. "
    "You judge whether a substep is done from the conversation and favor momentum: work that "
    "is outlined or could be refined still counts as satisfied."
)

COMPLETION_USER_PROMPT = """SUBSTEP: {substep_title}

ACCEPTANCE CRITERIA:
{criteria}

RECENT CONVERSATION:
{conversation}

Grade how complete this substep is. Return ONLY valid JSON with this structure:
{{"confidence_score": 85, "satisfied_criteria": ["criterion"], "missing_criteria": ["criterion"]}}

Rules:
- confidence_score is 0-100
- A criterion is satisfied if the builder produced a reasonable first version of it
- List a criterion as missing only if there is no evidence of it at all
- Return ONLY the JSON object, no markdown"""

_STOPWORDS = {
    "the", "and", "for", "with", "that", "this", "from", "your", "into", "each",
    "have", "been", "will", "what", "when", "then", "than", "they", "them",
    "defined", "described", "written", "three", "clear",
}


@dataclass
class CompletionAssessment:
    """Result of analyzing a conversation for substep completion."""

    recommendation: str
    score: int
    confidence: str
    satisfied: list[str] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)
    nudge_message: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


def is_explicit_completion_request(message: str) -> bool:
    """Check if a user message explicitly asks to complete the substep."""
    text = message.lower()
    return any(re.search(pattern, text) for pattern in EXPLICIT_COMPLETION_PATTERNS)


def _keywords(text: str) -> set[str]:
    return {
        word for word in re.findall(r"[a-z0-9']+", text.lower())
        if len(word) >= 4 and word not in _STOPWORDS
    }


def _criterion_met(criterion: str, transcript_words: set[str]) -> bool:
    keywords = _keywords(criterion)
    if not keywords:
        return False
    overlap = keywords & transcript_words
    return len(overlap) * 2 >= len(keywords)


def _confidence(score: int) -> str:
    if score >= READY_THRESHOLD:
        return "high"
    if score >= 50:
        return "medium"
    return "low"


def _recommendation(score: int) -> str:
    if score >= READY_THRESHOLD:
        return READY_TO_COMPLETE
    if score >= SUGGEST_THRESHOLD:
        return SUGGEST_COMPLETE
    return NO_RECOMMENDATION


def _assessment(score: int, satisfied: list[str], missing: list[str]) -> CompletionAssessment:
    recommendation = _recommendation(score)
    return CompletionAssessment(
        recommendation=recommendation,
        score=score,
        confidence=_confidence(score),
        satisfied=satisfied,
        missing=missing,
        nudge_message=NUDGE_MESSAGE if recommendation != NO_RECOMMENDATION else None,
    )


def analyze_completion(
    messages: list[dict],
    acceptance_criteria: list[str] | None = None,
    substep_title: str = "",
) -> CompletionAssessment:
    """Assess whether the current substep looks complete.

    An explicit request in the latest user message always wins. Otherwise
    the LLM grades the conversation when it is available, and the
    heuristic is used when it is not or when the LLM call fails.

    Args:
        messages: Chat messages with 'role' and 'content' keys, oldest first.
        acceptance_criteria: Criteria for the current substep (may be empty).
        substep_title: Title of the substep, used in the LLM prompt.

    Returns:
        CompletionAssessment with a recommendation of ready_to_complete,
        suggest_complete, or none.
    """
    recent = messages[-RECENT_MESSAGE_WINDOW:]
    user_messages = [m.get("content", "") for m in recent if m.get("role") == "user"]

    if user_messages and is_explicit_completion_request(user_messages[-1]):
        return CompletionAssessment(
            recommendation=READY_TO_COMPLETE,
            score=100,
            confidence="high",
            satisfied=["User explicitly asked to complete the substep"],
            nudge_message=NUDGE_MESSAGE,
        )

    if recent and is_available():
        assessment = llm_analysis(recent, acceptance_criteria or [], substep_title)
        if assessment is not None:
            return assessment

    return heuristic_analysis(messages, acceptance_criteria)


def llm_analysis(
    messages: list[dict], acceptance_criteria: list[str], substep_title: str = ""
) -> CompletionAssessment | None:
    """Ask the LLM to grade the conversation. Returns None on any failure."""
    criteria = "\n".join(f"- {c}" for c in acceptance_criteria) or "- (none listed)"
    conversation = "\n".join(
        f"{m.get('role', 'user').upper()}: {m.get('content', '')}" for m in messages
    )
    prompt = COMPLETION_USER_PROMPT.format(
        substep_title=substep_title or "(untitled)",
        criteria=criteria,
        conversation=conversation,
    )
    try:
        raw = generate(prompt, system_prompt=COMPLETION_SYSTEM_PROMPT, json_mode=True)
    except (LLMUnavailableError, LLMClientError) as e:
        logger.warning("LLM completion analysis failed: %s. Using heuristic.", e)
        return None
    return parse_assessment_response(raw)


def _string_list(value) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(item).strip() for item in value if str(item).strip()]


def parse_assessment_response(raw_json: str) -> CompletionAssessment | None:
    """Parse LLM JSON into an assessment.

    Returns:
        The assessment, or None if the payload is malformed.
    """
    try:
        data = json.loads(raw_json)
    except (json.JSONDecodeError, TypeError):
        logger.warning("Failed to parse completion JSON, using heuristic")
        return None
    if not isinstance(data, dict):
        logger.warning("Completion JSON is not an object, using heuristic")
        return None

    raw_score = data.get("confidence_score")
    if isinstance(raw_score, bool) or not isinstance(raw_score, (int, float)):
        logger.warning("Completion JSON has no numeric confidence_score, using heuristic")
        return None

    return _assessment(
        int(max(0, min(100, raw_score))),
        _string_list(data.get("satisfied_criteria")),
        _string_list(data.get("missing_criteria")),
    )


def heuristic_analysis(messages: list[dict], acceptance_criteria: list[str] | None = None) -> CompletionAssessment:
    """Score the recent conversation with regex signals and criteria keyword overlap."""
    criteria = [c for c in (acceptance_criteria or []) if c and c.strip()]
    recent = messages[-RECENT_MESSAGE_WINDOW:]

    transcript = " ".join(m.get("content", "") for m in recent).lower()
    satisfied = [label for pattern, label in POSITIVE_SIGNALS if re.search(pattern, transcript)]
    missing = [label for pattern, label in NEGATIVE_SIGNALS if re.search(pattern, transcript)]

    signal_score = min(len(satisfied), 3) / 3 * 100
    if criteria:
        words = _keywords(transcript)
        met = [c for c in criteria if _criterion_met(c, words)]
        satisfied.extend(f"Criterion met: {c}" for c in met)
        missing.extend(f"Criterion open: {c}" for c in criteria if c not in met)
        raw_score = 0.6 * (len(met) / len(criteria) * 100) + 0.4 * signal_score
    else:
        raw_score = signal_score

    negatives = sum(1 for pattern, _ in NEGATIVE_SIGNALS if re.search(pattern, transcript))
    score = int(max(0, min(100, raw_score - 25 * negatives)))
    return _assessment(score, satisfied, missing)
