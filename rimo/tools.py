from __future__ import annotations
import hashlib
import logging
from typing import Any, Dict, Optional
from sqlalchemy.orm import Session
from . import llm_gateway
from .ats import score_extraction
from .config import RATE_LIMIT_MAX_REQUESTS, RATE_LIMIT_WINDOW_MINUTES, normalize_email
from .rate_limit import check_rate_limit
from .tool_access import verify_tool_access

logger = logging.getLogger(__name__)


class ToolInputError(ValueError):
    pass


class ToolOutputError(RuntimeError):
    pass


_ENHANCE_SYSTEM = """You are an expert resume writer and career coach specializing in Product Management and tech careers.
Rewrite the resume with stronger action verbs, quantified achievements, impact-focused STAR bullet points and consistent formatting.
Respond with a JSON object:
{"suggestions": ["..."], "enhancedContent": "<markdown resume>", "formatting": {"sections": ["..."], "colorScheme": "...", "fontRecommendation": "..."}}"""

_COVER_LETTER_SYSTEM = """You are an expert career coach who writes concise, specific cover letters for product and tech roles.
Use only facts present in the resume. Respond with a JSON object:
{"coverLetter": "<full letter>", "keyPoints": ["..."], "tone": "..."}"""

_INTERVIEW_SYSTEM = """You are a senior product leader preparing a candidate for interviews.
Using the resume and job description, respond with a JSON object:
{"questions": [{"question": "...", "category": "behavioral|product|strategy|technical", "whyAsked": "...", "suggestedAnswer": "..."}], "focusAreas": ["..."]}"""

_PARSE_SYSTEM = """You extract structured data from resumes. Do not invent content.
Respond with a JSON object:
{"name": "...", "email": "...", "phone": "...", "location": "...", "summary": "...", "experience": [{"title": "...", "company": "...", "dates": "...", "bullets": ["..."]}], "education": ["..."], "skills": ["..."], "certifications": ["..."]}"""

_LINKEDIN_SYSTEM = """You are a LinkedIn profile strategist for product leaders.
Score the profile for recruiter visibility and positioning. Respond with a JSON object:
{"overallScore": 0, "sectionScores": {"headline": 0, "about": 0, "experience": 0, "skills": 0}, "strengths": ["..."], "improvements": [{"section": "...", "issue": "...", "fix": "..."}], "rewrittenHeadline": "..."}"""

_ATS_SYSTEM = """You are an expert ATS keyword extractor. Extract EXACTLY what appears in the documents; do not infer keywords.
Return ONLY valid JSON:
{"jd_extraction": {"job_title": "", "years_required": "", "hard_skills": [], "soft_skills": [], "education_required": "", "certifications_required": [], "industry_keywords": []},
 "resume_extraction": {"current_title": "", "years_experience": "", "hard_skills": [], "soft_skills": [], "education": "", "certifications": [], "quantified_achievements_count": 0, "industries": [], "has_summary_section": false, "has_skills_section": false, "contact_complete": false},
 "formatting_assessment": {"has_clean_format": true, "uses_standard_sections": true, "issues": []}}"""

# name -> tool_type, required/optional inputs with max length, prompts
TOOLS: Dict[str, Dict[str, Any]] = {
    "enhance_resume": {
        "tool_type": "resume_suite",
        "required": {"resume_text": 15000},
        "optional": {},
        "system": _ENHANCE_SYSTEM,
        "user": "Please enhance this resume:\n\n{resume_text}",
        "temperature": 0.7,
    },
    "cover_letter": {
        "tool_type": "resume_suite",
        "required": {"resume_text": 50000, "job_description": 20000},
        "optional": {"company_name": 200, "hiring_manager_name": 200, "candidate_name": 200},
        "system": _COVER_LETTER_SYSTEM,
        "user": "Company: {company_name}\nHiring manager: {hiring_manager_name}\nCandidate: {candidate_name}\n\n"
                "JOB DESCRIPTION:\n{job_description}\n\nRESUME:\n{resume_text}",
        "temperature": 0.7,
    },
    "interview_prep": {
        "tool_type": "resume_suite",
        "required": {"resume_text": 50000, "job_description": 20000},
        "optional": {"company_name": 200, "role_title": 200},
        "system": _INTERVIEW_SYSTEM,
        "user": "Company: {company_name}\nRole: {role_title}\n\nJOB DESCRIPTION:\n{job_description}\n\nRESUME:\n{resume_text}",
        "temperature": None,
    },
    "parse_resume": {
        "tool_type": "resume_suite",
        "required": {"resume_text": 50000},
        "optional": {},
        "system": _PARSE_SYSTEM,
        "user": "{resume_text}",
        "temperature": 0,
    },
    "analyze_linkedin": {
        "tool_type": "linkedin_signal",
        "required": {"profile_text": 20000},
        "optional": {"target_role": 200, "target_industry": 200},
        "system": _LINKEDIN_SYSTEM,
        "user": "Target role: {target_role}\nTarget industry: {target_industry}\n\nPROFILE:\n{profile_text}",
        "temperature": None,
    },
    "ats_score": {
        "tool_type": "resume_suite",
        "required": {"resume_text": 50000, "job_description": 20000},
        "optional": {},
        "system": _ATS_SYSTEM,
        "user": "**JOB DESCRIPTION:**\n{job_description}\n\n**RESUME:**\n{resume_text}",
        "temperature": 0,
    },
}


def validate_inputs(tool: Dict[str, Any], data: Dict[str, Any]) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for field, limit in tool["required"].items():
        value = data.get(field)
        if not isinstance(value, str) or not value.strip():
            raise ToolInputError(f"{field} is required")
        if len(value) > limit:
            raise ToolInputError(f"{field} is too long. Please limit to {limit:,} characters.")
        out[field] = value
    for field, limit in tool["optional"].items():
        value = data.get(field)
        if value is None:
            out[field] = "not specified"
            continue
        if not isinstance(value, str):
            raise ToolInputError(f"{field} must be a string")
        out[field] = value[:limit] or "not specified"
    return out

def rate_limit_identifier(access_token: Optional[str], email: Optional[str], client_ip: str) -> str:
    if access_token:
        # access tokens are bearer credentials; only a digest is stored or logged
        return "token:" + hashlib.sha256(access_token.encode("utf-8")).hexdigest()[:16]
    email = normalize_email(email)
    if email:
        return f"email:{email}"
    return f"ip:{client_ip}"

def run_tool(
    db: Session,
    name: str,
    data: Dict[str, Any],
    email: Optional[str] = None,
    access_token: Optional[str] = None,
    client_ip: str = "unknown",
) -> Dict[str, Any]:
    """Validate, rate limit, verify entitlement, then call the gateway.

    Any rejection raises before the gateway is contacted.
    """
    tool = TOOLS.get(name)
    if tool is None:
        raise KeyError(name)

    inputs = validate_inputs(tool, data)
    check_rate_limit(
        db,
        rate_limit_identifier(access_token, email, client_ip),
        f"tool:{name}",
        RATE_LIMIT_MAX_REQUESTS,
        RATE_LIMIT_WINDOW_MINUTES,
    )
    access = verify_tool_access(db, tool["tool_type"], email=email, access_token=access_token)

    messages = [
        {"role": "system", "content": tool["system"]},
        {"role": "user", "content": tool["user"].format(**inputs)},
    ]
    logger.info("running tool %s", name)
    content = llm_gateway.chat(messages, temperature=tool["temperature"])
    try:
        result = llm_gateway.extract_json(content)
    except ValueError as e:
        logger.error("tool %s returned unparseable output: %s", name, e)
        raise ToolOutputError(f"Failed to parse {name} output") from e

    if name == "ats_score":
        if not isinstance(result, dict):
            raise ToolOutputError("Failed to parse ats_score output")
        result = score_extraction(result, inputs["resume_text"])

    return {
        "tool": name,
        "result": result,
        "access": {"expires_at": access["expires_at"], "days_remaining": access["days_remaining"]},
    }
