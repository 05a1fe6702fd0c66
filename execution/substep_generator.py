"""LLM-powered substep generation for phase expansion.

Breaks a phase into 15-30 minute substeps tailored to the project goal.
Falls back to the static template substeps if the LLM is unavailable,
fails, or returns output that does not fit the phase's bounds.
"""

import json
import logging
import uuid

from execution.llm_client import LLMClientError, LLMUnavailableError, generate, is_available
from execution.phase_templates import fallback_substeps, get_template
from execution.roadmap import Phase, Substep

logger = logging.getLogger(__name__)

SUBSTEP_SYSTEM_PROMPT = (
    "You are a Master Builder AI designing substeps for a Zero-to-One project builder. "
    "You respect phase boundaries and only produce work that belongs to the given phase."
)

SUBSTEP_USER_PROMPT = """PHASE: {phase_id} - {title}
PHASE GOAL: {goal}
PHASE OUTCOME: {description}
PROJECT VISION: {project_goal}

Break this phase into {min_substeps}-{max_substeps} concrete substeps (15-30 minutes each).
Return ONLY valid JSON with this structure:
{{"substeps": [
  {{"title": "Short action title", "description": "What to do and what to produce",
    "estimated_minutes": 20, "tools_needed": ["tool"], "acceptance_criteria": ["criterion"]}},
  ...
]}}

Rules:
- Between {min_substeps} and {max_substeps} substeps, in execution order
- Each substep produces a visible, copy-paste-ready deliverable
- Stay inside this phase's scope
- Return ONLY the JSON object, no markdown"""


def generate_substeps(phase: Phase, project_goal: str) -> list[Substep]:
    """Generate substeps for a phase via LLM. Falls back to template substeps."""
    if not is_available():
        logger.info("LLM unavailable, using fallback substeps for %s", phase.phase_id)
        return fallback_substeps(phase.phase_number)

    template = get_template(phase.phase_number) or {}
    min_substeps = template.get("min_substeps", 2)
    max_substeps = template.get("max_substeps", 5)

    try:
        prompt = SUBSTEP_USER_PROMPT.format(
            phase_id=phase.phase_id,
            title=phase.title,
            goal=phase.goal,
            description=phase.description,
            project_goal=project_goal.strip(),
            min_substeps=min_substeps,
            max_substeps=max_substeps,
        )
        raw = generate(prompt, system_prompt=SUBSTEP_SYSTEM_PROMPT, json_mode=True)
    except (LLMUnavailableError, LLMClientError) as e:
        logger.warning("LLM substep generation failed: %s. Using fallback.", e)
        return fallback_substeps(phase.phase_number)

    substeps = parse_substeps_response(raw, min_substeps, max_substeps)
    if substeps is None:
        return fallback_substeps(phase.phase_number)
    logger.info("Generated %d substeps for %s", len(substeps), phase.phase_id)
    return substeps


def _positive_int(value, default: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return number if number > 0 else default


def _string_list(value) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(item).strip() for item in value if str(item).strip()]


def parse_substeps_response(raw_json: str, min_substeps: int, max_substeps: int) -> list[Substep] | None:
    """Parse LLM JSON into numbered substeps.

    Returns:
        The substeps, or None if the payload is malformed or out of bounds.
    """
    try:
        data = json.loads(raw_json)
    except (json.JSONDecodeError, TypeError):
        logger.warning("Failed to parse substep JSON, using fallback")
        return None

    items = data.get("substeps") if isinstance(data, dict) else None
    if not isinstance(items, list):
        logger.warning("Substep JSON has no 'substeps' list, using fallback")
        return None

    items = [item for item in items if isinstance(item, dict) and str(item.get("title", "")).strip()]
    if not min_substeps <= len(items) <= max_substeps:
        logger.warning(
            "Substep JSON has %d usable substeps (expected %d-%d), using fallback",
            len(items), min_substeps, max_substeps,
        )
        return None

    return [
        Substep(
            id=str(uuid.uuid4()),
            number=index,
            title=str(item["title"]).strip(),
            description=str(item.get("description", "")).strip(),
            estimated_minutes=_positive_int(item.get("estimated_minutes"), 20),
            tools_needed=_string_list(item.get("tools_needed")),
            acceptance_criteria=_string_list(item.get("acceptance_criteria")),
        )
        for index, item in enumerate(items, start=1)
    ]
