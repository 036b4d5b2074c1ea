"""Configuration constants, paths, and thresholds."""

import os
from pathlib import Path

# ---------------------------------------------------------------------------
# Load .env if present
# ---------------------------------------------------------------------------
BASE_DIR = Path(__file__).parent.parent
_env_path = BASE_DIR / ".env"
if _env_path.exists():
    for _line in _env_path.read_text().splitlines():
        _line = _line.strip()
        if _line and not _line.startswith("#") and "=" in _line:
            _k, _, _v = _line.partition("=")
            os.environ.setdefault(_k.strip(), _v.strip().strip("\"'"))

# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------
DATA_DIR = Path(__file__).parent / "data"
RULEBOOK_PATH = Path(os.environ.get("RULEBOOK_PATH", DATA_DIR / "rulebook.json"))
OUTPUT_DIR = BASE_DIR / "output"
OUTPUT_PATH = OUTPUT_DIR / "report.json"

# ---------------------------------------------------------------------------
# Embeddings & Retrieval
# ---------------------------------------------------------------------------
EMBED_MODEL = os.environ.get("EMBED_MODEL", "BAAI/bge-base-en-v1.5")
EMBED_MODEL_FALLBACK = "all-MiniLM-L6-v2"
MAX_EMBED_CHARS = 30_000
RETRIEVAL_TIMEOUT = float(os.environ.get("RETRIEVAL_TIMEOUT", "8.0"))
RETRIEVAL_CONCURRENCY = int(os.environ.get("RETRIEVAL_CONCURRENCY", "4"))
RETRIEVAL_TOP_K = 5
BROAD_SEARCH_TOP_K = 3
BROAD_SEARCH_KEYWORDS = 3
ALTERNATIVE_MIN_SIMILARITY = 0.65
LEXICAL_WEIGHT = 0.25
# Rows fetched per wanted result when filtering happens after the index cut.
RETRIEVAL_OVERFETCH = 4

SUPABASE_URL = os.environ.get("SUPABASE_URL", "")
SUPABASE_KEY = os.environ.get("SUPABASE_SERVICE_KEY", "") or os.environ.get("SUPABASE_ANON_KEY", "")
SUPABASE_MATCH_FUNCTION = "match_document_embeddings"

# ---------------------------------------------------------------------------
# Detection & Scoring
# ---------------------------------------------------------------------------
DEFAULT_MIN_CONFIDENCE = 0.7
MISSING_CLAUSE_CONFIDENCE = 0.9
PROHIBITED_CONFIDENCE_BAND = (0.85, 0.95)
DEDUP_PREFIX_CHARS = 50
DEDUP_SEVERITY_PREFIX_CHARS = 30
FINDING_PENALTY = 5
RISK_SCORE_CAP = 10.0

# ---------------------------------------------------------------------------
# LLM Settings
# ---------------------------------------------------------------------------
ANTHROPIC_API_KEY = os.environ.get("ANTHROPIC_API_KEY", "")
LLM_MODEL = "claude-sonnet-4-20250514"
LLM_MAX_TOKENS = 1024

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
