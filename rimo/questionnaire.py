from __future__ import annotations
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session, selectinload
from .models_db import AssessmentModule, AssessmentQuestion, QuestionOption, AssessmentResponse

logger = logging.getLogger(__name__)

_SEED_PATH = Path(__file__).resolve().parent / "catalog_seed.json"

QUESTION_TYPES = {"multiple_choice", "scenario", "forced_choice", "scale_1_5", "confidence", "short_text"}
CHOICE_TYPES = {"multiple_choice", "scenario", "forced_choice"}
NUMERIC_TYPES = {"scale_1_5", "confidence"}
TEXT_TYPES = {"short_text"}


class DimensionThreshold(BaseModel):
    kind: Literal["dimension_threshold"] = "dimension_threshold"
    dimension: str
    min_score: Optional[float] = None
    max_score: Optional[float] = None


class ResponsePatternCondition(BaseModel):
    kind: Literal["response_pattern"] = "response_pattern"
    pattern: Any = None


class UnknownCondition(BaseModel):
    kind: Literal["unknown"] = "unknown"
    raw: Dict[str, Any] = Field(default_factory=dict)


BranchCondition = Union[DimensionThreshold, ResponsePatternCondition, UnknownCondition]


class Module(BaseModel):
    id: str
    name: str
    description: str = ""
    order_index: int = 0


class Option(BaseModel):
    id: str
    question_id: str
    label: str = ""
    text: str = ""
    score_map: Dict[str, float] = Field(default_factory=dict)
    level_map: Dict[str, Any] = Field(default_factory=dict)
    order_index: int = 0


class Question(BaseModel):
    id: str
    module_id: str
    question_type: str
    prompt: str
    help_text: Optional[str] = None
    order_index: int = 0
    weight: float = 1.0
    skill_dimensions: List[str] = Field(default_factory=list)
    min_level: Optional[str] = None
    max_level: Optional[str] = None
    is_calibration: bool = False
    branch_conditions: List[BranchCondition] = Field(default_factory=list)
    options: List[Option] = Field(default_factory=list)

    def option(self, option_id: str | None) -> Option | None:
        for o in self.options:
            if o.id == option_id:
                return o
        return None


class Response(BaseModel):
    question_id: str
    selected_option_id: Optional[str] = None
    numeric_value: Optional[int] = None
    text_value: Optional[str] = None


class Catalog(BaseModel):
    modules: List[Module] = Field(default_factory=list)
    questions: List[Question] = Field(default_factory=list)

    def question(self, question_id: str) -> Question | None:
        for q in self.questions:
            if q.id == question_id:
                return q
        return None

    def by_id(self) -> Dict[str, Question]:
        return {q.id: q for q in self.questions}


def _to_float(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None

def parse_branch_condition(raw: Any, question_id: str = "") -> List[BranchCondition]:
    """Turn the loosely typed ``branch_condition`` column into explicit variants.

    ``requires_dimension`` (with optional ``min_score``/``max_score``) becomes a
    DimensionThreshold; ``requires_response_pattern`` becomes its own variant.
    Anything else is kept as UnknownCondition so the filter can exclude it.
    """
    if not raw:
        return []
    if not isinstance(raw, dict):
        logger.warning("question %s: branch condition is not an object: %r", question_id, raw)
        return [UnknownCondition(raw={"value": raw})]

    out: List[BranchCondition] = []
    dimension = raw.get("requires_dimension")
    if dimension:
        min_raw, max_raw = raw.get("min_score"), raw.get("max_score")
        min_score, max_score = _to_float(min_raw), _to_float(max_raw)
        if (min_raw is not None and min_score is None) or (max_raw is not None and max_score is None):
            out.append(UnknownCondition(raw=raw))
        else:
            out.append(DimensionThreshold(dimension=str(dimension), min_score=min_score, max_score=max_score))
    if raw.get("requires_response_pattern") is not None:
        out.append(ResponsePatternCondition(pattern=raw.get("requires_response_pattern")))

    known = {"requires_dimension", "min_score", "max_score", "requires_response_pattern"}
    if not out and any(v is not None for k, v in raw.items() if k not in known):
        out.append(UnknownCondition(raw=raw))
    return out

def _numeric_map(raw: Any, owner: str) -> Dict[str, float]:
    if not isinstance(raw, dict):
        return {}
    out: Dict[str, float] = {}
    for k, v in raw.items():
        f = _to_float(v)
        if f is None:
            logger.warning("option %s: non-numeric score for %s: %r", owner, k, v)
            continue
        out[str(k)] = f
    return out


def module_from_row(row: AssessmentModule) -> Module:
    return Module(id=row.id, name=row.name, description=row.description or "", order_index=row.order_index or 0)

def option_from_row(row: QuestionOption) -> Option:
    return Option(
        id=row.id,
        question_id=row.question_id,
        label=row.option_label or "",
        text=row.option_text or "",
        score_map=_numeric_map(row.score_map, row.id),
        level_map=row.level_map if isinstance(row.level_map, dict) else {},
        order_index=row.order_index or 0,
    )

def question_from_row(row: AssessmentQuestion) -> Question:
    if row.question_type not in QUESTION_TYPES:
        logger.warning("question %s: unknown question type %r", row.id, row.question_type)
    options = sorted((option_from_row(o) for o in row.options), key=lambda o: o.order_index)
    return Question(
        id=row.id,
        module_id=row.module_id,
        question_type=row.question_type,
        prompt=row.prompt,
        help_text=row.help_text,
        order_index=row.order_index or 0,
        weight=_to_float(row.weight) or 1.0,
        skill_dimensions=[str(d) for d in (row.skill_dimensions or [])],
        min_level=row.min_level or None,
        max_level=row.max_level or None,
        is_calibration=bool(row.is_calibration),
        branch_conditions=parse_branch_condition(row.branch_condition, row.id),
        options=options,
    )

def response_from_row(row: AssessmentResponse) -> Response:
    return Response(
        question_id=row.question_id,
        selected_option_id=row.selected_option_id,
        numeric_value=row.numeric_value,
        text_value=row.text_value,
    )


def load_modules(db: Session) -> List[Module]:
    rows = (
        db.query(AssessmentModule)
        .filter(AssessmentModule.is_active == True)
        .order_by(AssessmentModule.order_index.asc())
        .all()
    )
    return [module_from_row(r) for r in rows]

def load_catalog(db: Session) -> Catalog:
    rows = (
        db.query(AssessmentQuestion)
        .options(selectinload(AssessmentQuestion.options))
        .filter(AssessmentQuestion.is_active == True)
        .order_by(AssessmentQuestion.order_index.asc())
        .all()
    )
    return Catalog(modules=load_modules(db), questions=[question_from_row(r) for r in rows])


def load_seed(path: Path | None = None) -> dict:
    return json.loads((path or _SEED_PATH).read_text(encoding="utf-8"))

def seed_catalog(db: Session, data: dict) -> Dict[str, int]:
    """Upsert modules, questions and options from a seed document keyed by id."""
    counts = {"modules": 0, "questions": 0, "options": 0}
    for m in data.get("modules", []):
        db.merge(AssessmentModule(
            id=m["id"],
            name=m["name"],
            description=m.get("description", ""),
            order_index=m.get("order_index", 0),
            is_active=m.get("is_active", True),
        ))
        counts["modules"] += 1
        for q in m.get("questions", []):
            db.merge(AssessmentQuestion(
                id=q["id"],
                module_id=m["id"],
                question_type=q["question_type"],
                prompt=q["prompt"],
                help_text=q.get("help_text"),
                order_index=q.get("order_index", 0),
                weight=q.get("weight", 1.0),
                min_level=q.get("min_level"),
                max_level=q.get("max_level"),
                is_calibration=q.get("is_calibration", False),
                skill_dimensions=q.get("skill_dimensions"),
                branch_condition=q.get("branch_condition"),
                is_active=q.get("is_active", True),
            ))
            counts["questions"] += 1
            for o in q.get("options", []):
                db.merge(QuestionOption(
                    id=o["id"],
                    question_id=q["id"],
                    option_label=o.get("option_label", ""),
                    option_text=o.get("option_text", ""),
                    score_map=o.get("score_map"),
                    level_map=o.get("level_map"),
                    order_index=o.get("order_index", 0),
                ))
                counts["options"] += 1
    db.commit()
    return counts
