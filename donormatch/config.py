"""
Configuration module for the emergency donor matching backend.
"""
import os
from dotenv import load_dotenv
from loguru import logger

# Load environment variables from .env file
load_dotenv()

LOG_JSON = os.getenv("LOG_JSON", "false").lower() == "true"
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")

# Database configuration
SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_KEY = os.getenv("SUPABASE_KEY")

# Ranking provider credentials and endpoints
GOOGLE_AI_KEY = os.getenv("GOOGLE_AI_KEY") or os.getenv("GEMINI_API_KEY")
GEMINI_BASE_URL = os.getenv("GEMINI_BASE_URL", "https://generativelanguage.googleapis.com")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-pro")
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL", "https://api.openai.com")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-3.5-turbo")
OLLAMA_ENDPOINT = os.getenv("OLLAMA_ENDPOINT", "http://localhost:11434")
OLLAMA_MODEL = os.getenv("OLLAMA_MODEL", "llama2:7b")

# Fallback chain order (cheapest/fastest first)
RANKING_PROVIDER_ORDER = [
    p.strip().lower()
    for p in os.getenv("RANKING_PROVIDER_ORDER", "gemini,openai,ollama").split(",")
    if p.strip()
]

# Per-provider bounds
PROVIDER_TIMEOUT_S = float(os.getenv("PROVIDER_TIMEOUT_S", "8.0"))
PROVIDER_SUMMARY_LIMIT = int(os.getenv("PROVIDER_SUMMARY_LIMIT", "15"))
PROVIDER_FAILURE_THRESHOLD = int(os.getenv("PROVIDER_FAILURE_THRESHOLD", "3"))
PROVIDER_RECOVERY_S = int(os.getenv("PROVIDER_RECOVERY_S", "60"))

# Candidate search
CANDIDATE_RADIUS_KM = float(os.getenv("CANDIDATE_RADIUS_KM", "50"))

# Result caps (critical requests cast a wider net)
CRITICAL_MAX_RESULTS = int(os.getenv("CRITICAL_MAX_RESULTS", "20"))
DEFAULT_MAX_RESULTS = int(os.getenv("DEFAULT_MAX_RESULTS", "10"))

# Escalation pacing
WAVE_TWO_DELAY_S = float(os.getenv("WAVE_TWO_DELAY_S", str(2 * 60)))
ESCALATION_RETAIN_SETTLED = int(os.getenv("ESCALATION_RETAIN_SETTLED", "200"))

# Response monitoring
MONITOR_MAX_RETRIES = int(os.getenv("MONITOR_MAX_RETRIES", "3"))
MONITOR_RETRY_DELAY_S = float(os.getenv("MONITOR_RETRY_DELAY_S", "2.0"))
MONITOR_MAX_WATCH_S = float(os.getenv("MONITOR_MAX_WATCH_S", str(60 * 60)))
MATCH_POLL_INTERVAL_S = float(os.getenv("MATCH_POLL_INTERVAL_S", "5.0"))

logger.info(
    f"Matching config loaded: providers={RANKING_PROVIDER_ORDER}, "
    f"timeout={PROVIDER_TIMEOUT_S}s, wave_two_delay={WAVE_TWO_DELAY_S}s, env={ENVIRONMENT}"
)


def get_matching_config():
    """Get current matching configuration snapshot."""
    return {
        "supabase_enabled": bool(SUPABASE_URL and SUPABASE_KEY),
        "provider_order": list(RANKING_PROVIDER_ORDER),
        "provider_timeout_s": PROVIDER_TIMEOUT_S,
        "provider_summary_limit": PROVIDER_SUMMARY_LIMIT,
        "provider_failure_threshold": PROVIDER_FAILURE_THRESHOLD,
        "provider_recovery_s": PROVIDER_RECOVERY_S,
        "candidate_radius_km": CANDIDATE_RADIUS_KM,
        "critical_max_results": CRITICAL_MAX_RESULTS,
        "default_max_results": DEFAULT_MAX_RESULTS,
        "wave_two_delay_s": WAVE_TWO_DELAY_S,
        "escalation_retain_settled": ESCALATION_RETAIN_SETTLED,
        "monitor_max_retries": MONITOR_MAX_RETRIES,
        "monitor_retry_delay_s": MONITOR_RETRY_DELAY_S,
        "monitor_max_watch_s": MONITOR_MAX_WATCH_S,
        "match_poll_interval_s": MATCH_POLL_INTERVAL_S,
    }


def is_supabase_enabled():
    """Check if Supabase persistence is configured."""
    return bool(SUPABASE_URL and SUPABASE_KEY)
