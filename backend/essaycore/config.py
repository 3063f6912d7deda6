"""Runtime configuration read from the environment."""

import os

# Scoring
SCORE_MIN = int(os.getenv("SCORE_MIN", "0"))
SCORE_MAX = int(os.getenv("SCORE_MAX", "100"))
SCORING_BACKEND = os.getenv("SCORING_BACKEND", "heuristic")
SCORING_TIMEOUT_SECONDS = float(os.getenv("SCORING_TIMEOUT_SECONDS", "30"))

OPENROUTER_URL = os.getenv("OPENROUTER_URL", "https://openrouter.ai/api/v1/chat/completions")
OPENROUTER_API_KEY = os.getenv("OPENROUTER_API_KEY")
OPENROUTER_MODEL = os.getenv("OPENROUTER_MODEL", "mistralai/mistral-small-3.1-24b-instruct:free")

# Identity
SESSION_MAX_AGE_DAYS = int(os.getenv("SESSION_MAX_AGE_DAYS", "30"))
VERIFICATION_TOKEN_TTL_HOURS = int(os.getenv("VERIFICATION_TOKEN_TTL_HOURS", "24"))
GOOGLE_TOKENINFO_URL = os.getenv("GOOGLE_TOKENINFO_URL", "https://oauth2.googleapis.com/tokeninfo")

# HTTP
CORS_ORIGINS = os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
