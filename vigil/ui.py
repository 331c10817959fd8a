from typing import Dict, List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from classification.models import ClassificationResult

console = Console()


def banner(title: str, subtitle: Optional[str] = None) -> None:
    text = title if subtitle is None else f"{title}\n{subtitle}"
    console.print(Panel.fit(text, border_style="cyan"))


def outcome_table(result: ClassificationResult, title: str = "Classification") -> Table:
    """One row per dimension in processing order; unclassified rows are dimmed."""
    table = Table(title=title)
    table.add_column("Dimension", style="cyan")
    table.add_column("Label")
    table.add_column("Confidence", justify="right")
    table.add_column("Matched")
    table.add_column("Rule", style="dim")

    for rule_type in result.processing_order:
        outcome = result.get(rule_type)
        if outcome is None:
            table.add_row(rule_type, "[dim]unclassified[/dim]", "", "", "")
        else:
            table.add_row(
                rule_type,
                outcome.classification_value,
                f"{outcome.confidence_score:.2f}",
                ", ".join(outcome.matched_substrings),
                outcome.rule_id
            )
    return table


def error_panel(message: str, errors: List[Dict[str, str]]) -> Panel:
    lines = [f"Error: {message}"]
    lines.extend(f"{err['field']}: {err['message']}" for err in errors)
    return Panel.fit("\n".join(lines), border_style="red")
