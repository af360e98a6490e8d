"""
Application-wide settings and environment configuration
"""

from __future__ import annotations

import os
from pathlib import Path

# Project paths
DEVLOG_ROOT = Path(__file__).parent.parent
DATA_DIR = DEVLOG_ROOT / "data"

# Environment
ENV = os.getenv("DEVLOG_ENV", "production")
DEBUG = ENV == "development"

# API Configuration
API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("API_PORT", "8000"))
LOG_LEVEL = os.getenv("DEVLOG_LOG_LEVEL", "INFO")

# Google Cloud / Gemini
GOOGLE_CLOUD_PROJECT = os.getenv("GOOGLE_CLOUD_PROJECT", "")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.0-flash-001")  # Vertex AI model
GEMINI_LOCATION = os.getenv("GEMINI_LOCATION", "us-central1")
GEMINI_MAX_TOKENS = int(os.getenv("GEMINI_MAX_TOKENS", "4096"))
GEMINI_TEMPERATURE = float(os.getenv("GEMINI_TEMPERATURE", "0.4"))

# GitHub
GITHUB_PAT = os.getenv("GITHUB_PAT", os.getenv("GITHUB_PERSONAL_ACCESS_TOKEN", ""))
GITHUB_API_URL = os.getenv("GITHUB_API_URL", "https://api.github.com")

# Cron trigger shared secret
CRON_SECRET = os.getenv("CRON_SECRET", "")

# Seed file for agent instructions
INSTRUCTIONS_SEED_PATH = Path(
    os.getenv("DEVLOG_INSTRUCTIONS_PATH", str(DATA_DIR / "instructions.yaml"))
)


def is_development() -> bool:
    """Check if running in development"""
    return os.getenv("DEVLOG_ENV", ENV) == "development"
