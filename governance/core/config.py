"""
Configuration for the recommendation governance service.
All settings come from the environment (optionally a .env file).
"""

import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

# Database path configuration
DB_PATH = os.getenv("DB_PATH", "./data/governance.db")

DEBUG = os.getenv("DEBUG", "false").lower() == "true"

# Advisory collaborator
ADVISOR_PROVIDER = os.getenv("ADVISOR_PROVIDER", "mock")  # mock|ollama
OLLAMA_MODEL = os.getenv("OLLAMA_MODEL", "llama3.1:latest")
ADVISOR_TIMEOUT_SEC = float(os.getenv("ADVISOR_TIMEOUT_SEC", "30"))
CHAT_CONTEXT_MESSAGES = int(os.getenv("CHAT_CONTEXT_MESSAGES", "10"))  # History handed to the advisor

# Validation history
RECENT_VALIDATIONS_LIMIT = int(os.getenv("RECENT_VALIDATIONS_LIMIT", "5"))
ALIGNMENT_WINDOW = int(os.getenv("ALIGNMENT_WINDOW", "0"))  # 0 = whole ledger

# KPI status thresholds (current / target ratio)
KPI_AT_RISK_THRESHOLD = float(os.getenv("KPI_AT_RISK_THRESHOLD", "0.8"))
KPI_OFF_TRACK_THRESHOLD = float(os.getenv("KPI_OFF_TRACK_THRESHOLD", "0.6"))

# Version string
VERSION = "1.0.0"


def debug_enabled():
    """Check if debug mode is enabled."""
    return os.getenv("DEBUG", "false").lower() == "true"


def ensure_db_directory(db_path: str = None):
    """Ensure the database directory exists."""
    Path(db_path or DB_PATH).parent.mkdir(parents=True, exist_ok=True)


def get_advisor():
    """Get the configured advisory collaborator."""
    if ADVISOR_PROVIDER == "ollama":
        from ..agents.ollama_advisor import OllamaAdvisor
        return OllamaAdvisor(model_name=OLLAMA_MODEL)

    from ..agents.mock_advisor import MockAdvisor
    return MockAdvisor()


def validate_config():
    """Validate configuration and return any issues."""
    issues = []

    if ADVISOR_PROVIDER not in ["mock", "ollama"]:
        issues.append(f"Invalid ADVISOR_PROVIDER: {ADVISOR_PROVIDER}")

    if ADVISOR_TIMEOUT_SEC <= 0:
        issues.append("ADVISOR_TIMEOUT_SEC must be > 0")

    if CHAT_CONTEXT_MESSAGES < 0:
        issues.append("CHAT_CONTEXT_MESSAGES must be >= 0")

    if RECENT_VALIDATIONS_LIMIT < 1:
        issues.append("RECENT_VALIDATIONS_LIMIT must be >= 1")

    if ALIGNMENT_WINDOW < 0:
        issues.append("ALIGNMENT_WINDOW must be >= 0")

    if not 0 < KPI_OFF_TRACK_THRESHOLD < KPI_AT_RISK_THRESHOLD:
        issues.append("KPI thresholds must satisfy 0 < KPI_OFF_TRACK_THRESHOLD < KPI_AT_RISK_THRESHOLD")

    return issues
