from __future__ import annotations
import os
from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "").strip()
RIMO_API_KEY = os.getenv("RIMO_API_KEY", "").strip() or None
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO"

LLM_GATEWAY_URL = os.getenv("LLM_GATEWAY_URL", "https://ai.gateway.lovable.dev/v1/chat/completions").strip()
LLM_GATEWAY_KEY = os.getenv("LLM_GATEWAY_KEY", "").strip() or None
LLM_MODEL = os.getenv("LLM_MODEL", "google/gemini-2.5-flash").strip()
LLM_TIMEOUT_SECONDS = float(os.getenv("LLM_TIMEOUT_SECONDS", "60"))
LLM_MAX_ATTEMPTS = int(os.getenv("LLM_MAX_ATTEMPTS", "3"))

APP_BASE_URL = os.getenv("APP_BASE_URL", "https://theleadersrow.com").strip().rstrip("/")
TOOL_ACCESS_DAYS = int(os.getenv("TOOL_ACCESS_DAYS", "30"))

RATE_LIMIT_MAX_REQUESTS = int(os.getenv("RATE_LIMIT_MAX_REQUESTS", "120"))
RATE_LIMIT_WINDOW_MINUTES = int(os.getenv("RATE_LIMIT_WINDOW_MINUTES", "30"))
REPORT_RATE_LIMIT_MAX_REQUESTS = int(os.getenv("REPORT_RATE_LIMIT_MAX_REQUESTS", "10"))
REPORT_RATE_LIMIT_WINDOW_MINUTES = int(os.getenv("REPORT_RATE_LIMIT_WINDOW_MINUTES", "60"))

# Lowest to highest seniority.
LEVEL_ORDER = ["aspiring", "junior", "PM", "Senior", "Principal", "Director"]

SIGNUP_GATE_THRESHOLD = 6
NUMERIC_DIMENSION_FACTOR = 2

TOOL_TYPES = {"resume_suite", "linkedin_signal"}

SESSION_STATUSES = ["not_started", "in_progress", "submitted", "scored"]

DIMENSION_WEIGHTS = {
    "strategy": 1.2, "influence": 1.2, "leadership": 1.1, "narrative": 1.0,
    "execution": 0.9, "visibility": 1.0, "ambiguity": 1.0, "data": 0.9, "general": 0.8,
    "executive_presence": 1.2, "communication": 1.1, "stakeholder_management": 1.1,
    "negotiation": 1.0, "interview_readiness": 0.9, "conflict_management": 1.0,
    "power_dynamics": 1.0, "customer_empathy": 1.0, "product_sense": 1.1,
    "technical_fluency": 0.9, "prioritization": 1.0, "cross_functional": 0.9,
}

def dimension_weight(dimension: str) -> float:
    return DIMENSION_WEIGHTS.get(dimension, 1.0)

def normalize_email(email: str | None) -> str | None:
    if email is None:
        return None
    email = email.strip().lower()
    return email or None
