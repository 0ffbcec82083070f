"""
Agent command pipeline configuration.
All settings are read from the environment (a local .env file is honoured).
"""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Audit sink database
DB_PATH = os.getenv("DB_PATH", "./data/sitemind.db")

DEBUG = os.getenv("DEBUG", "false").lower() == "true"

# Language model collaborator
LLM_PROVIDER = os.getenv("LLM_PROVIDER", "ollama")  # ollama|mock
OLLAMA_HOST = os.getenv("OLLAMA_HOST", "http://localhost:11434")
OLLAMA_MODEL = os.getenv("OLLAMA_MODEL", "llama3.1:8b")
LLM_TEMPERATURE = float(os.getenv("LLM_TEMPERATURE", "0.2"))
LLM_TIMEOUT_SEC = float(os.getenv("LLM_TIMEOUT_SEC", "60"))

# Business operation collaborators
OPERATION_TIMEOUT_SEC = float(os.getenv("OPERATION_TIMEOUT_SEC", "15"))

# Approval workflow
APPROVAL_TIMEOUT_SEC = int(os.getenv("APPROVAL_TIMEOUT_SEC", "3600"))
# how long denied, consumed and expired requests stay queryable
APPROVAL_RETENTION_SEC = int(os.getenv("APPROVAL_RETENTION_SEC", "86400"))

# Conversation context
CONTEXT_WINDOW_TURNS = int(os.getenv("CONTEXT_WINDOW_TURNS", "4"))
SESSION_HISTORY_LIMIT = int(os.getenv("SESSION_HISTORY_LIMIT", "50"))

# Audit log writer
AUDIT_MEMORY_LIMIT = int(os.getenv("AUDIT_MEMORY_LIMIT", "1000"))

# HTTP surface
API_HOST = os.getenv("API_HOST", "127.0.0.1")
API_PORT = int(os.getenv("API_PORT", "8000"))
CORS_ORIGINS = [o.strip() for o in os.getenv(
    "CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000"
).split(",") if o.strip()]

VERSION = "1.0.0"


def debug_enabled():
    """Check if debug mode is enabled."""
    return os.getenv("DEBUG", "false").lower() == "true"


def ensure_db_directory(db_path: str = None):
    """Ensure the database directory exists."""
    Path(db_path or DB_PATH).parent.mkdir(parents=True, exist_ok=True)


def validate_agent_config():
    """Validate agent configuration and return any issues."""
    issues = []

    if LLM_PROVIDER not in ["ollama", "mock"]:
        issues.append(f"Invalid LLM_PROVIDER: {LLM_PROVIDER}")

    if APPROVAL_TIMEOUT_SEC < 1:
        issues.append("APPROVAL_TIMEOUT_SEC must be >= 1")

    if APPROVAL_RETENTION_SEC < 0:
        issues.append("APPROVAL_RETENTION_SEC must be >= 0")

    if CONTEXT_WINDOW_TURNS < 0:
        issues.append("CONTEXT_WINDOW_TURNS must be >= 0")

    if LLM_TIMEOUT_SEC <= 0 or OPERATION_TIMEOUT_SEC <= 0:
        issues.append("LLM_TIMEOUT_SEC and OPERATION_TIMEOUT_SEC must be > 0")

    if not 0.0 <= LLM_TEMPERATURE <= 2.0:
        issues.append(f"LLM_TEMPERATURE out of range: {LLM_TEMPERATURE}")

    return issues
