"""
Configuration
=============
Loads environment variables from .env file using python-dotenv.

Environment Variables:
    GROQ_API_KEY         - Primary LLM provider API key (Groq, OpenAI-compatible)
    GEMINI_API_KEY       - Fallback LLM provider API key (Google Gemini)
    OPENROUTER_API_KEY   - Second fallback LLM provider (OpenRouter free models)
    AI_MODEL             - Groq model used for triage and fix generation
    GITHUB_TOKEN         - Required for opening and merging pull requests
    GITHUB_OWNER         - Default repository owner when a report has no repoUrl
    GITHUB_REPO          - Default repository name when a report has no repoUrl
    AUTO_MERGE           - Request merge of automated fixes (default: true)
    WORKSPACE_ROOT       - Parent directory for per-issue workspaces
    RUN_VALIDATION       - Run tests/build after writing a fix (default: false)
    SMTP_*, NOTIFY_EMAIL - Notification email transport
    DEMO_MODE            - Skip sandbox and coding agent (default: false)

Timeout Philosophy:
    Every call that leaves the process (LLM, GitHub, SMTP, git, package
    managers, test runners) carries an explicit timeout. One hung issue
    must never stall the pipelines of other issues.
"""
import os
import tempfile

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


# LLM providers
GROQ_API_KEY = os.getenv("GROQ_API_KEY")
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY")
OPENROUTER_API_KEY = os.getenv("OPENROUTER_API_KEY")
AI_MODEL = os.getenv("AI_MODEL", "llama-3.3-70b-versatile")
LLM_TIMEOUT = float(os.getenv("LLM_TIMEOUT", 60))

# Provider health cooldown
PROVIDER_COOLDOWN_THRESHOLD = int(os.getenv("PROVIDER_COOLDOWN_THRESHOLD", 4))
PROVIDER_COOLDOWN_SKIP_COUNT = int(os.getenv("PROVIDER_COOLDOWN_SKIP_COUNT", 5))

# Code hosting
GITHUB_TOKEN = os.getenv("GITHUB_TOKEN")
GITHUB_OWNER = os.getenv("GITHUB_OWNER", "")
GITHUB_REPO = os.getenv("GITHUB_REPO", "")
GITHUB_API_URL = os.getenv("GITHUB_API_URL", "https://api.github.com").rstrip("/")
GITHUB_TIMEOUT = float(os.getenv("GITHUB_TIMEOUT", 30))
AUTO_MERGE = _env_bool("AUTO_MERGE", True)

# Workspace
WORKSPACE_ROOT = os.getenv(
    "WORKSPACE_ROOT", os.path.join(tempfile.gettempdir(), "site-surgeon")
)
CLONE_TIMEOUT = int(os.getenv("CLONE_TIMEOUT", 120))
INSTALL_TIMEOUT = int(os.getenv("INSTALL_TIMEOUT", 300))
VALIDATE_TIMEOUT = int(os.getenv("VALIDATE_TIMEOUT", 120))
VALIDATION_OUTPUT_LIMIT = int(os.getenv("VALIDATION_OUTPUT_LIMIT", 2000))
RUN_VALIDATION = _env_bool("RUN_VALIDATION", False)

# Fix synthesis
MAX_CANDIDATE_FILES = 5
MAX_LISTED_FILES_IN_PROMPT = 300
PATCH_PREVIEW_CHARS = 300

# Notification email
SMTP_HOST = os.getenv("SMTP_HOST", "")
SMTP_PORT = int(os.getenv("SMTP_PORT", 587))
SMTP_USER = os.getenv("SMTP_USER", "")
SMTP_PASS = os.getenv("SMTP_PASS", "")
SMTP_FROM = os.getenv("SMTP_FROM", "") or SMTP_USER
SMTP_TIMEOUT = float(os.getenv("SMTP_TIMEOUT", 10))
NOTIFY_EMAIL = os.getenv("NOTIFY_EMAIL", "")

# Demo mode skips the sandbox and the coding agent entirely
DEMO_MODE = _env_bool("DEMO_MODE", False)

# Variables the service can run without, at reduced capability
RECOMMENDED_ENV = ("GROQ_API_KEY", "GITHUB_TOKEN", "GITHUB_OWNER", "GITHUB_REPO")


def missing_env() -> list[str]:
    """Return the recommended environment variables that are not set."""
    return [name for name in RECOMMENDED_ENV if not os.getenv(name)]
