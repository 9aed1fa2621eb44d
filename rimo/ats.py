"""Deterministic ATS scoring over keywords extracted from a resume and a job post.

The model only extracts; every number here is computed, so the same extraction
always produces the same score.
"""
from __future__ import annotations
import math
import re
from typing import Any, Dict, List, Tuple
import numpy as np

ATS_WEIGHTS = {
    "hard_skills": 0.25,
    "keyword_match": 0.20,
    "job_title": 0.15,
    "soft_skills": 0.10,
    "experience": 0.10,
    "measurable_results": 0.10,
    "format": 0.05,
    "searchability": 0.05,
}

_PUNCT = re.compile(r"[^\w\s-]")
_SPACES = re.compile(r"\s+")
_FIRST_INT = re.compile(r"(\d+)")


def _half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def normalize_text(text: str) -> str:
    return _SPACES.sub(" ", _PUNCT.sub(" ", (text or "").lower())).strip()

def keyword_match(keyword: str, text: str) -> bool:
    nk = normalize_text(keyword)
    if not nk:
        return False
    nt = normalize_text(text)
    variations = [nk, re.sub(r"s$", "", nk), nk + "s", nk.replace("-", " "), nk.replace(" ", "-")]
    for v in variations:
        if v and v in nt:
            return True
    return re.search(rf"\b{re.escape(nk)}\b", text or "", re.IGNORECASE) is not None

def match_percentage(matched: int, total: int) -> int:
    if total == 0:
        return 100
    return _half_up(100.0 * matched / total)

def _split_skills(required: List[str], found: List[str], resume_text: str) -> Tuple[List[str], List[str]]:
    found_lower = [s.lower() for s in found]
    matched, missing = [], []
    for skill in required:
        hit = any(keyword_match(skill, rs) or keyword_match(rs, skill) for rs in found_lower) \
            or keyword_match(skill, resume_text)
        (matched if hit else missing).append(skill)
    return matched, missing

def _first_int(value: Any) -> int:
    m = _FIRST_INT.search(str(value or ""))
    return int(m.group(1)) if m else 0

def experience_score(years_required: Any, years_shown: Any) -> int:
    required, shown = _first_int(years_required), _first_int(years_shown)
    if required <= 0:
        return 80
    if shown >= required:
        return 100
    if shown >= required - 1:
        return 85
    if shown >= required - 2:
        return 70
    return max(30, _half_up(100.0 * shown / required))

def format_score(formatting: Dict[str, Any]) -> int:
    score = 100
    if not formatting.get("has_clean_format"):
        score -= 20
    if not formatting.get("uses_standard_sections"):
        score -= 15
    score -= min(30, len(formatting.get("issues") or []) * 10)
    return max(40, score)

def searchability_score(resume: Dict[str, Any]) -> int:
    score = 70
    for flag in ("has_summary_section", "has_skills_section", "contact_complete"):
        if resume.get(flag):
            score += 10
    return min(100, score)

def measurable_results_score(count: int) -> int:
    for floor, score in ((10, 100), (8, 90), (6, 75), (4, 60), (2, 40), (1, 25)):
        if count >= floor:
            return score
    return 10

def title_match_score(job_title: str, resume_title: str) -> int:
    jd, rt = (job_title or "").lower(), (resume_title or "").lower()
    if not jd or not rt:
        return 50
    if jd in rt or rt in jd:
        return 100
    jd_words = [w for w in jd.split() if len(w) > 2]
    rt_words = [w for w in rt.split() if len(w) > 2]
    overlap = [w for w in jd_words if any(w in r or r in w for r in rt_words)]
    return max(30, _half_up(100.0 * len(overlap) / max(len(jd_words), 1)))


def score_extraction(extraction: Dict[str, Any], resume_text: str) -> Dict[str, Any]:
    jd = extraction.get("jd_extraction") or {}
    resume = extraction.get("resume_extraction") or {}
    formatting = extraction.get("formatting_assessment") or {}

    hard_matched, hard_missing = _split_skills(jd.get("hard_skills") or [], resume.get("hard_skills") or [], resume_text)
    soft_matched, soft_missing = _split_skills(jd.get("soft_skills") or [], resume.get("soft_skills") or [], resume_text)

    keywords = (jd.get("hard_skills") or []) + (jd.get("soft_skills") or []) + (jd.get("industry_keywords") or [])
    kw_matched = [k for k in keywords if keyword_match(k, resume_text)]
    kw_missing = [k for k in keywords if k not in kw_matched]

    achievements = int(resume.get("quantified_achievements_count") or 0)
    breakdown = {
        "hard_skills": match_percentage(len(hard_matched), len(hard_matched) + len(hard_missing)),
        "keyword_match": match_percentage(len(kw_matched), len(keywords)),
        "job_title": title_match_score(jd.get("job_title", ""), resume.get("current_title", "")),
        "soft_skills": match_percentage(len(soft_matched), len(soft_matched) + len(soft_missing)),
        "experience": experience_score(jd.get("years_required"), resume.get("years_experience")),
        "measurable_results": measurable_results_score(achievements),
        "format": format_score(formatting),
        "searchability": searchability_score(resume),
    }
    keys = list(ATS_WEIGHTS)
    total = float(np.dot([breakdown[k] for k in keys], [ATS_WEIGHTS[k] for k in keys]))

    return {
        "ats_score": _half_up(total),
        "breakdown": breakdown,
        "hard_skills": {"matched": hard_matched, "missing": hard_missing},
        "soft_skills": {"matched": soft_matched, "missing": soft_missing},
        "keywords": {"matched": kw_matched, "missing": kw_missing},
        "job_title": jd.get("job_title"),
        "resume_title": resume.get("current_title"),
        "years_required": jd.get("years_required"),
        "years_experience": resume.get("years_experience"),
        "format_issues": formatting.get("issues") or [],
    }
