"""Main orchestration pipeline: contract file in, report.json and summary out."""

import json
import logging
import time
from pathlib import Path

from .aggregator import ComplianceAggregator
from .config import (
    DEFAULT_MIN_CONFIDENCE, OUTPUT_PATH, RULEBOOK_PATH, SUPABASE_KEY, SUPABASE_URL,
)
from .embeddings import SentenceTransformerEmbedder
from .errors import ContractInputError
from .models import AnalysisOptions
from .narration import with_narrative
from .output import generate_summary, print_rich_summary, report_to_dict
from .retrieval import SemanticRetrievalClient
from .rulebook import load_rulebook
from .vector_index import SupabaseVectorIndex

logger = logging.getLogger(__name__)

SUPPORTED_SUFFIXES = (".txt", ".docx")


def read_contract(path: Path) -> str:
    """Contract text from a .txt or .docx file; paragraphs joined by newlines."""
    if not path.exists():
        raise ContractInputError(f"File not found: {path}")
    suffix = path.suffix.lower()
    if suffix == ".txt":
        text = path.read_text(encoding="utf-8")
    elif suffix == ".docx":
        from docx import Document

        doc = Document(str(path))
        text = "\n".join(p.text for p in doc.paragraphs if p.text.strip())
    else:
        raise ContractInputError(
            f"Unsupported contract format {path.suffix!r}; expected one of {SUPPORTED_SUFFIXES}"
        )
    if not text.strip():
        raise ContractInputError(f"Contract is empty: {path}")
    return text


def build_retrieval_client() -> SemanticRetrievalClient | None:
    """Semantic retrieval when a Supabase index is configured, else None (lexical fallback)."""
    if not (SUPABASE_URL and SUPABASE_KEY):
        return None
    return SemanticRetrievalClient(
        SentenceTransformerEmbedder(),
        SupabaseVectorIndex(SUPABASE_URL, SUPABASE_KEY),
    )


def run_pipeline(
    input_source: str,
    rulebook_path: str | None = None,
    include_alternatives: bool = False,
    min_confidence: float = DEFAULT_MIN_CONFIDENCE,
    narrate: bool = False,
    output_path: Path = OUTPUT_PATH,
    retrieval: SemanticRetrievalClient | None = None,
    llm_client=None,
    progress_callback=None,
    show_summary: bool = True,
) -> dict:
    """
    Review one contract file against the rulebook.

    Returns a dict with metadata, summary, report (serialized) and report_path.
    """

    def progress(step, total, msg):
        if progress_callback:
            progress_callback(step, total, msg)
        else:
            logger.info(msg)

    t0 = time.time()

    progress(1, 5, "[Step 1/5] Loading rulebook...")
    rulebook = load_rulebook(Path(rulebook_path) if rulebook_path else RULEBOOK_PATH)

    progress(2, 5, "[Step 2/5] Reading contract...")
    input_path = Path(input_source)
    contract_text = read_contract(input_path)
    logger.info("  Input: %s (%d characters)", input_path.name, len(contract_text))

    progress(3, 5, "[Step 3/5] Analysing contract...")
    if retrieval is None and include_alternatives:
        retrieval = build_retrieval_client()
    aggregator = ComplianceAggregator.from_rulebook(rulebook, retrieval=retrieval)
    options = AnalysisOptions(
        include_alternatives=include_alternatives,
        min_confidence=min_confidence,
    )
    report = aggregator.analyze_sync(contract_text, options)

    if narrate:
        progress(4, 5, "[Step 4/5] Writing reviewer notes...")
        report = with_narrative(report, llm_client)
    else:
        progress(4, 5, "[Step 4/5] Skipping reviewer notes...")

    progress(5, 5, "[Step 5/5] Writing report...")
    summary = generate_summary(report)
    output_metadata = {
        "input_file": str(input_path),
        "rulebook_version": rulebook.version,
        "processing_time_seconds": round(time.time() - t0, 2),
        **report.metadata,
    }
    output = {"metadata": output_metadata, "summary": summary, "report": report_to_dict(report)}
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w") as f:
        json.dump(output, f, indent=2, ensure_ascii=False)
    logger.info("  report.json written to: %s", output_path)

    if show_summary:
        print_rich_summary(summary, report)

    return {
        "metadata": output_metadata,
        "summary": summary,
        "report": output["report"],
        "report_path": str(output_path),
    }
