"""Output generation: report serialization, summary, rich terminal output."""

import dataclasses

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .models import CRITICAL, HIGH, LOW, MEDIUM, ComplianceReport, Finding, severity_rank

_RISK_STYLE = {CRITICAL: "bold magenta", HIGH: "bold red", MEDIUM: "bold yellow", LOW: "bold green"}


def _ranked(findings) -> list[Finding]:
    """Most severe first; missing clauses ahead of prohibited text at equal severity."""
    return sorted(findings, key=lambda f: (severity_rank(f.severity), not f.is_missing_clause))


def finding_to_dict(f: Finding) -> dict:
    d = dataclasses.asdict(f)
    d["alternative_ids"] = list(f.alternative_ids)
    return d


def report_to_dict(report: ComplianceReport) -> dict:
    return {
        "overall_risk": report.overall_risk,
        "risk_score": report.risk_score,
        "compliance_score": report.compliance_score,
        "findings": [finding_to_dict(f) for f in report.findings],
        "alternatives": {
            finding_id: [dataclasses.asdict(c) for c in chunks]
            for finding_id, chunks in report.alternatives.items()
        },
        "narrative": report.narrative,
        "metadata": report.metadata,
    }


def generate_summary(report: ComplianceReport) -> dict:
    by_severity = {}
    by_kind = {}
    for f in report.findings:
        by_severity[f.severity] = by_severity.get(f.severity, 0) + 1
        by_kind[f.kind] = by_kind.get(f.kind, 0) + 1

    return {
        "total_findings": len(report.findings),
        "overall_risk": report.overall_risk,
        "risk_score": report.risk_score,
        "compliance_score": report.compliance_score,
        "severity_breakdown": by_severity,
        "kind_breakdown": by_kind,
        "missing_clause_count": len(report.missing_clauses),
        "prohibited_language_count": len(report.prohibited_language),
        "top_risks": [
            {"finding_id": f.finding_id, "citation": f.citation, "severity": f.severity,
             "kind": f.kind, "policy_reference": f.policy_reference,
             "summary": f.description[:200]}
            for f in _ranked(report.findings)[:10]
        ],
    }


def print_rich_summary(summary: dict, report: ComplianceReport, console: Console | None = None) -> None:
    console = console or Console()
    console.print()
    sev = summary.get("severity_breakdown", {})
    style = _RISK_STYLE.get(report.overall_risk, "bold")
    summary_text = (
        f"[bold]Overall Risk:[/bold] [{style}]{report.overall_risk}[/]  "
        f"[bold]Risk Score:[/bold] {report.risk_score:.1f}/10  "
        f"[bold]Compliance:[/bold] {report.compliance_score}/100\n"
        f"[bold]Findings:[/bold] {summary['total_findings']}  "
        f"(missing clauses {summary['missing_clause_count']}, "
        f"prohibited language {summary['prohibited_language_count']})\n"
        f"[bold magenta]Critical:[/bold magenta] {sev.get(CRITICAL, 0)}  "
        f"[bold red]High:[/bold red] {sev.get(HIGH, 0)}  "
        f"[bold yellow]Medium:[/bold yellow] {sev.get(MEDIUM, 0)}  "
        f"[bold green]Low:[/bold green] {sev.get(LOW, 0)}"
    )
    console.print(Panel(summary_text, title="Compliance Review Summary", border_style="blue", expand=False))

    if report.findings:
        table = Table(title="Top Findings", box=box.ROUNDED, show_lines=True)
        table.add_column("Citation", style="bold", width=22)
        table.add_column("Severity", width=9)
        table.add_column("Issue", width=40)
        table.add_column("Suggested Language", width=50)
        for f in _ranked(report.findings)[:10]:
            issue = "Missing clause" if f.is_missing_clause else f'"{f.problematic_text}" at {f.start}'
            suggestion = f.suggested_alternative or ""
            if len(suggestion) > 120:
                suggestion = suggestion[:120] + "..."
            citation = f.citation or f.rule_id
            if f.policy_reference:
                citation += f"\n({f.policy_reference})"
            table.add_row(
                citation,
                f"[{_RISK_STYLE.get(f.severity, '')}]{f.severity}[/]",
                f"{issue}\n{f.description}",
                suggestion,
            )
        console.print(table)

    if report.narrative:
        console.print(Panel(report.narrative, title="Reviewer Notes", border_style="green", expand=False))
    console.print()
