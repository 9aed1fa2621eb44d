from __future__ import annotations
import logging
import math
from typing import Dict, Iterable, List, Mapping, Optional, Any
from .config import LEVEL_ORDER, NUMERIC_DIMENSION_FACTOR, SIGNUP_GATE_THRESHOLD
from .questionnaire import (
    Question, Response, DimensionThreshold, ResponsePatternCondition,
    CHOICE_TYPES, NUMERIC_TYPES, TEXT_TYPES,
)

logger = logging.getLogger(__name__)

LEVEL_INDEX = {lvl: i for i, lvl in enumerate(LEVEL_ORDER)}

# (question id, problem) pairs already reported, so a bad row warns once per process.
_flagged: set = set()


def _flag(question: Question, problem: str) -> None:
    key = (question.id, problem)
    if key in _flagged:
        return
    _flagged.add(key)
    logger.warning("question %s hidden: %s", question.id, problem)


def level_index(level: Optional[str]) -> Optional[int]:
    if not level:
        return None
    return LEVEL_INDEX.get(level)


def is_question_for_level(question: Question, inferred_level: Optional[str]) -> bool:
    """Level gating, independent of branching.

    Calibration questions are always shown. Ungated questions are always shown.
    Before a level is inferred only questions without a ``min_level`` are shown.
    Bounds naming a level outside LEVEL_ORDER never pass.
    """
    if question.is_calibration:
        return True
    if not question.min_level and not question.max_level:
        return True

    min_idx = level_index(question.min_level)
    max_idx = level_index(question.max_level)
    if (question.min_level and min_idx is None) or (question.max_level and max_idx is None):
        _flag(question, f"unknown level bound min={question.min_level!r} max={question.max_level!r}")
        return False

    if not inferred_level:
        return not question.min_level

    user_idx = level_index(inferred_level)
    if user_idx is None:
        _flag(question, f"inferred level {inferred_level!r} not in hierarchy")
        return False
    if min_idx is not None and user_idx < min_idx:
        return False
    if max_idx is not None and user_idx > max_idx:
        return False
    return True


def passes_branch_conditions(
    question: Question,
    scores: Mapping[str, float],
    responses: Mapping[str, Response],
) -> bool:
    # responses is accepted for condition kinds that read answers directly
    for cond in question.branch_conditions:
        if isinstance(cond, DimensionThreshold):
            value = float(scores.get(cond.dimension, 0.0))
            if cond.min_score is not None and value < cond.min_score:
                return False
            if cond.max_score is not None and value > cond.max_score:
                return False
        elif isinstance(cond, ResponsePatternCondition):
            _flag(question, "requires_response_pattern is not evaluable")
            return False
        else:
            _flag(question, f"unrecognised branch condition {cond.raw!r}")
            return False
    return True


def compute_dimension_scores(
    responses: Iterable[Response] | Mapping[str, Response],
    questions_by_id: Mapping[str, Question],
) -> Dict[str, float]:
    """Fold every response into per-dimension totals.

    Selected options add their ``score_map``; numeric answers add
    ``value * NUMERIC_DIMENSION_FACTOR`` to each of the question's skill
    dimensions; free text adds nothing.
    """
    if isinstance(responses, Mapping):
        responses = responses.values()

    parts: Dict[str, List[float]] = {}
    for r in responses:
        q = questions_by_id.get(r.question_id)
        if q is None:
            continue
        if r.selected_option_id:
            opt = q.option(r.selected_option_id)
            if opt is not None:
                for dim, val in opt.score_map.items():
                    parts.setdefault(dim, []).append(float(val))
        if r.numeric_value is not None:
            for dim in q.skill_dimensions:
                parts.setdefault(dim, []).append(float(r.numeric_value) * NUMERIC_DIMENSION_FACTOR)

    # fsum is exactly rounded, so totals do not depend on response order.
    return {dim: math.fsum(vals) for dim, vals in sorted(parts.items())}


def visible_questions(
    questions: List[Question],
    responses: Mapping[str, Response],
    inferred_level: Optional[str],
    module_id: Optional[str] = None,
    scores: Optional[Mapping[str, float]] = None,
) -> List[Question]:
    if scores is None:
        scores = compute_dimension_scores(responses, {q.id: q for q in questions})
    pool = [q for q in questions if module_id is None or q.module_id == module_id]
    pool.sort(key=lambda q: q.order_index)
    return [
        q for q in pool
        if is_question_for_level(q, inferred_level) and passes_branch_conditions(q, scores, responses)
    ]


def progress(answered_count: int, visible_count: int) -> int:
    if visible_count <= 0:
        return 0
    # half-up rounding
    return int(math.floor(100.0 * answered_count / visible_count + 0.5))


def should_show_signup_gate(answered_count: int, email: Optional[str]) -> bool:
    return answered_count >= SIGNUP_GATE_THRESHOLD and not email


def evaluate(
    questions: List[Question],
    responses: Mapping[str, Response],
    inferred_level: Optional[str],
    email: Optional[str],
    module_id: Optional[str] = None,
) -> Dict[str, Any]:
    by_id = {q.id: q for q in questions}
    scores = compute_dimension_scores(responses, by_id)
    # progress always runs over the whole filtered catalog; module_id only narrows the listing
    visible = visible_questions(questions, responses, inferred_level, scores=scores)
    listed = visible if module_id is None else [q for q in visible if q.module_id == module_id]
    answered = len(responses)
    return {
        "questions": [q.model_dump() for q in listed],
        "dimension_scores": scores,
        "answered_count": answered,
        "visible_count": len(visible),
        "progress": progress(answered, len(visible)),
        "should_show_signup_gate": should_show_signup_gate(answered, email),
    }


def check_answer(question: Question, response: Response) -> None:
    """Raise ValueError unless the response carries exactly the value its question type takes."""
    given = {
        "selected_option_id": response.selected_option_id is not None,
        "numeric_value": response.numeric_value is not None,
        "text_value": response.text_value is not None,
    }
    if sum(given.values()) != 1:
        raise ValueError("Exactly one of selected_option_id, numeric_value or text_value is required")

    if question.question_type in CHOICE_TYPES:
        if not given["selected_option_id"]:
            raise ValueError("This question takes a selected option")
        if question.option(response.selected_option_id) is None:
            raise ValueError("Option does not belong to this question")
    elif question.question_type in NUMERIC_TYPES:
        if not given["numeric_value"]:
            raise ValueError("This question takes a numeric value")
        if not 1 <= response.numeric_value <= 5:
            raise ValueError("Numeric value must be between 1 and 5")
    elif question.question_type in TEXT_TYPES:
        if not given["text_value"] or not response.text_value.strip():
            raise ValueError("This question takes a text answer")


def calibration_level(question: Question, response: Response) -> Optional[str]:
    """Level carried by the chosen option of a calibration question, if any."""
    if not question.is_calibration or not response.selected_option_id:
        return None
    opt = question.option(response.selected_option_id)
    if opt is None:
        return None
    level = opt.level_map.get("level")
    return str(level) if level else None
