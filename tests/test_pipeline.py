import json
from unittest.mock import MagicMock

import pytest

import main
from compliance_review import pipeline
from compliance_review.errors import ContractInputError, RulebookError
from compliance_review.pipeline import read_contract, run_pipeline

from conftest import CLEAN_CONTRACT, RISKY_CONTRACT


@pytest.fixture
def contract_file(tmp_path):
    path = tmp_path / "contract.txt"
    path.write_text(RISKY_CONTRACT)
    return path


@pytest.fixture(autouse=True)
def no_remote_index(monkeypatch):
    monkeypatch.setattr(pipeline, "SUPABASE_URL", "")


def test_read_text_contract(contract_file):
    assert read_contract(contract_file) == RISKY_CONTRACT


def test_read_docx_contract(tmp_path):
    from docx import Document

    doc = Document()
    doc.add_paragraph("SPONSORED RESEARCH AGREEMENT")
    doc.add_paragraph("")
    doc.add_paragraph("The University shall indemnify the Sponsor.")
    path = tmp_path / "contract.docx"
    doc.save(str(path))

    assert read_contract(path) == "SPONSORED RESEARCH AGREEMENT\nThe University shall indemnify the Sponsor."


@pytest.mark.parametrize("name, content", [("empty.txt", "  \n"), ("contract.pdf", "text")])
def test_unreadable_contracts_are_rejected(tmp_path, name, content):
    path = tmp_path / name
    path.write_text(content)
    with pytest.raises(ContractInputError):
        read_contract(path)


def test_missing_contract_file(tmp_path):
    with pytest.raises(ContractInputError, match="not found"):
        read_contract(tmp_path / "nope.txt")


def test_run_pipeline_writes_report(contract_file, tmp_path):
    steps = []
    output_path = tmp_path / "out" / "report.json"

    result = run_pipeline(
        str(contract_file),
        include_alternatives=True,
        output_path=output_path,
        progress_callback=lambda step, total, msg: steps.append(step),
        show_summary=False,
    )

    assert steps == [1, 2, 3, 4, 5]
    assert result["report_path"] == str(output_path)
    saved = json.loads(output_path.read_text())
    assert saved["summary"]["total_findings"] == 9
    assert saved["report"]["overall_risk"] == "CRITICAL"
    assert saved["metadata"]["alternatives_source"] == "lexical"
    assert saved["metadata"]["rulebook_version"] == "2023-03-20"


def test_run_pipeline_clean_contract(tmp_path):
    path = tmp_path / "clean.txt"
    path.write_text(CLEAN_CONTRACT)
    result = run_pipeline(str(path), output_path=tmp_path / "report.json", show_summary=False)
    assert result["summary"]["total_findings"] == 0
    assert result["report"]["compliance_score"] == 100


def test_run_pipeline_with_narrative(contract_file, tmp_path):
    client = MagicMock()
    client.messages.stream.return_value.__enter__.return_value.text_stream = ['{"narrative": "Remove indemnity."}']

    result = run_pipeline(
        str(contract_file), narrate=True, llm_client=client,
        output_path=tmp_path / "report.json", show_summary=False,
    )

    assert result["report"]["narrative"] == "Remove indemnity."


def test_run_pipeline_bad_rulebook(contract_file, tmp_path):
    with pytest.raises(RulebookError):
        run_pipeline(str(contract_file), rulebook_path=str(tmp_path / "missing.json"),
                     output_path=tmp_path / "report.json", show_summary=False)


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def test_parse_args():
    opts = main.parse_args([
        "contract.docx", "--rulebook", "far.xlsx", "--alternatives",
        "--min-confidence", "0.9", "--narrate",
    ])
    assert opts == {
        "input_source": "contract.docx",
        "rulebook_path": "far.xlsx",
        "include_alternatives": True,
        "min_confidence": 0.9,
        "narrate": True,
    }


def test_parse_args_defaults():
    opts = main.parse_args(["contract.txt"])
    assert opts["include_alternatives"] is False
    assert opts["rulebook_path"] is None


@pytest.mark.parametrize("args", [
    ["contract.txt", "--min-confidence", "high"],
    ["contract.txt", "--min-confidence", "2"],
    ["contract.txt", "--verbose"],
])
def test_parse_args_rejects_bad_options(args):
    with pytest.raises(SystemExit):
        main.parse_args(args)


def test_main_exits_nonzero_on_input_error(monkeypatch, tmp_path):
    monkeypatch.setattr("sys.argv", ["main.py", str(tmp_path / "missing.txt")])
    with pytest.raises(SystemExit) as exc:
        main.main()
    assert exc.value.code == 1
