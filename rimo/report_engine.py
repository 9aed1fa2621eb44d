from __future__ import annotations
from collections import Counter
from typing import Dict, Any, List, Mapping, Optional, Tuple
import json
from pathlib import Path
import numpy as np
from .config import dimension_weight
from .questionnaire import Option, Question, Response

_RULES_PATH = Path(__file__).resolve().parent / "blocker_archetypes.json"

NEUTRAL = 50.0
CURVE = 0.8
DEFAULT_MAX_POSSIBLE = 10.0

ReportItem = Tuple[Question, Optional[Option], Optional[int]]

def load_rules() -> dict:
    return json.loads(_RULES_PATH.read_text(encoding="utf-8"))

def report_items(questions_by_id: Mapping[str, Question], responses: Mapping[str, Response]) -> List[ReportItem]:
    items: List[ReportItem] = []
    for r in responses.values():
        q = questions_by_id.get(r.question_id)
        if q is None:
            continue
        items.append((q, q.option(r.selected_option_id), r.numeric_value))
    return items

def score_dimensions(items: List[ReportItem]) -> Tuple[Dict[str, float], List[str]]:
    """Normalise answers to 0..100 per dimension and collect level hints.

    Option scores are averaged against 1.5x the largest magnitude seen for the
    dimension; numeric answers map 1..5 onto 0..100 scaled by question weight.
    The average is pulled 20% towards the neutral 50.
    """
    totals: Dict[str, float] = {}
    counts: Dict[str, int] = {}
    max_seen: Dict[str, float] = {}
    hints: List[str] = []

    for question, option, numeric in items:
        if option is not None and option.score_map:
            for dim, score in option.score_map.items():
                totals[dim] = totals.get(dim, 0.0) + score
                counts[dim] = counts.get(dim, 0) + 1
                max_seen[dim] = max(max_seen.get(dim, 0.0), abs(score) * 1.5)
            hint = option.level_map.get("level_hint")
            if hint:
                hints.append(str(hint))
        if numeric is not None:
            normalized = ((numeric - 1) / 4.0) * 100.0 * (question.weight or 1.0)
            for dim in question.skill_dimensions or ["general"]:
                totals[dim] = totals.get(dim, 0.0) + normalized
                counts[dim] = counts.get(dim, 0) + 1

    dims = sorted(totals)
    if not dims:
        return {}, hints
    tot = np.array([totals[d] for d in dims], dtype=float)
    cnt = np.array([counts[d] for d in dims], dtype=float)
    mx = np.array([max_seen.get(d) or DEFAULT_MAX_POSSIBLE for d in dims], dtype=float)

    raw = (tot / cnt) / mx * 100.0
    curved = np.clip(NEUTRAL + (raw - NEUTRAL) * CURVE, 0.0, 100.0)
    return {d: round(float(curved[i]), 4) for i, d in enumerate(dims)}, hints

def overall_score(scores: Dict[str, float]) -> float:
    if not scores:
        return NEUTRAL
    dims = list(scores)
    values = np.array([scores[d] for d in dims], dtype=float)
    weights = np.array([dimension_weight(d) for d in dims], dtype=float)
    return round(float(np.average(values, weights=weights)), 4)

def infer_level(scores: Dict[str, float], overall: float, hints: List[str]) -> str:
    s = lambda d: scores.get(d, NEUTRAL)
    level = "PM"
    if overall > 85 and s("narrative") >= 75 and s("influence") >= 75 and s("executive_presence") >= 70:
        level = "Director"
    elif overall >= 75 and s("leadership") >= 70 and s("stakeholder_management") >= 65:
        level = "GPM"
    elif overall >= 60 and s("strategy") >= 65 and s("influence") >= 60:
        level = "Principal"
    elif overall >= 45:
        level = "Senior"

    if hints:
        hint, n = Counter(hints).most_common(1)[0]
        if n >= 2:
            level = hint
    return level

def skill_heatmap(scores: Dict[str, float]) -> Dict[str, List[str]]:
    ranked = sorted(scores.items(), key=lambda kv: kv[1], reverse=True)
    return {
        "strengths": [d for d, _ in ranked[:3]],
        "gaps": [d for d, _ in ranked[-3:]],
    }

def _check_threshold(value: float, rule: dict) -> bool:
    if value is None:
        return False
    if "gt" in rule and not (value > float(rule["gt"])):
        return False
    if "gte" in rule and not (value >= float(rule["gte"])):
        return False
    if "lt" in rule and not (value < float(rule["lt"])):
        return False
    if "lte" in rule and not (value <= float(rule["lte"])):
        return False
    return True

def match_blocker(scores: Dict[str, float], overall: float, archetypes: List[dict]) -> Optional[dict]:
    for a in archetypes:
        when = a.get("when", {})
        ok = _check_threshold(overall, when.get("overall", {}))
        for dim, rule in when.get("dimensions", {}).items():
            ok = ok and _check_threshold(float(scores.get(dim, NEUTRAL)), rule)
        if ok:
            return a
    return None

def market_readiness(overall: float) -> str:
    if overall >= 80:
        return "You're ready to compete for senior roles now; your gaps are refinements, not blockers."
    if overall >= 65:
        return "You're close but have 1-2 critical gaps that hiring managers will notice. Fix them in the next 60 days."
    if overall >= 50:
        return "You have foundational strengths but need 3-6 months of focused development before targeting your next level."
    return "Focus on building core competencies first; rushing to apply will waste opportunities."

def experience_gaps(level: str) -> List[str]:
    gaps: List[str] = []
    if level in ("PM", "Senior"):
        gaps += ["Lead a 0→1 product launch", "Present to executive stakeholders", "Own cross-functional initiative"]
    if level == "Senior":
        gaps += ["Mentor junior PMs", "Define product strategy for a product area"]
    if level == "Principal":
        gaps += ["Influence company-level strategy", "Build and scale a PM team"]
    return gaps

def market_fit(level: str, scores: Dict[str, float]) -> Dict[str, List[str]]:
    roles = {
        "Director": ["VP Product", "Director of Product", "Head of Product"],
        "GPM": ["Group PM", "Senior PM Manager", "Head of Product (startup)"],
        "Principal": ["Principal PM", "Staff PM", "Lead PM"],
    }.get(level, ["Senior PM", "PM II", "Product Lead"])
    if scores.get("strategy", NEUTRAL) > 60:
        companies = ["Growth-stage startups", "Big Tech", "Category leaders"]
    else:
        companies = ["Established companies", "Mid-size tech", "B2B SaaS"]
    return {"role_types": roles, "company_types": companies}

def build_report(items: List[ReportItem], rules: Optional[dict] = None) -> Dict[str, Any]:
    rules = rules if rules is not None else load_rules()
    scores, hints = score_dimensions(items)
    overall = overall_score(scores)
    level = infer_level(scores, overall, hints)
    heatmap = skill_heatmap(scores)
    blocker = match_blocker(scores, overall, rules.get("archetypes", []))

    gap_actions = rules.get("gap_actions", {})
    top_gap = heatmap["gaps"][0] if heatmap["gaps"] else None
    actions = list(gap_actions.get(top_gap) or gap_actions.get("default", []))
    if blocker and blocker.get("action"):
        actions.append(blocker["action"])
    if rules.get("closing_action"):
        actions.append(rules["closing_action"])

    return {
        "overall_score": overall,
        "current_level_inferred": level,
        "dimension_scores": scores,
        "skill_heatmap": heatmap,
        "blocker_archetype": blocker.get("label") if blocker else None,
        "blocker_description": blocker.get("description") if blocker else None,
        "market_readiness": market_readiness(overall),
        "thirty_day_actions": actions[:5],
        "experience_gaps": experience_gaps(level),
        "market_fit": market_fit(level, scores),
    }
