#!/usr/bin/env python3
"""
Vigil CLI
Command line interface for classifying alerts and maintaining rules.
"""
import sys
import argparse
import logging
from typing import List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from config import ConfigManager
from main import VigilSystem
from classification import ClassificationEngine
from exceptions import VigilError
from vigil.logging_setup import setup_logging
from vigil.ui import banner, error_panel, outcome_table


console = Console()
logger = logging.getLogger("VigilCLI")


def cmd_classify(engine: ClassificationEngine, texts: List[str], source_type: Optional[str]) -> None:
    results = engine.classify_batch(texts, source_type=source_type)
    for text, result in zip(texts, results):
        console.print(outcome_table(result, title=text))


def cmd_test(engine: ClassificationEngine, text: Optional[str], record: Optional[bool]) -> None:
    if text is None:
        summary = engine.test_samples(record=record)
        table = Table(title=f"Sample run ({summary.sample_count} samples)")
        table.add_column("Rule", style="dim")
        table.add_column("Type", style="cyan")
        table.add_column("Pattern")
        table.add_column("Matches", justify="right")
        for rule in engine.list_rules(active_only=True):
            count = summary.match_counts.get(rule.id, 0)
            style = "red" if count == 0 else None
            table.add_row(rule.id, rule.rule_type, rule.condition_pattern, str(count), style=style)
        console.print(table)
        if summary.never_matched:
            console.print(Panel.fit(
                f"{len(summary.never_matched)} rule(s) never matched - candidates for revision",
                border_style="yellow"
            ))
        return

    report = engine.test_rules(text, record=record)
    table = Table(title=text)
    table.add_column("Rule", style="dim")
    table.add_column("Type", style="cyan")
    table.add_column("Priority", justify="right")
    table.add_column("Value")
    table.add_column("Matched")
    for result in report.results:
        rule = result.rule
        matched = ", ".join(result.matched_substrings) if result.matched else "[dim]-[/dim]"
        if result.error:
            matched = f"[red]{result.error}[/red]"
        table.add_row(rule.id, rule.rule_type, str(rule.priority), rule.classification_value, matched)
    console.print(table)
    console.print(f"{len(report.matched)} matched, {len(report.unmatched)} unmatched")


def cmd_import(engine: ClassificationEngine, path: str, author: Optional[str]) -> None:
    rules = engine.import_rules(path, created_by=author)
    console.print(Panel.fit(f"Imported {len(rules)} rule(s) from {path}", border_style="green"))


def cmd_export(engine: ClassificationEngine, path: Optional[str], rule_type: Optional[str]) -> None:
    document = engine.export_rules(file_path=path, rule_type=rule_type)
    if path is None:
        console.print(document, markup=False, highlight=False)
    else:
        console.print(Panel.fit(f"Exported rules to {path}", border_style="green"))


def cmd_stats(engine: ClassificationEngine) -> None:
    summary = engine.get_summary()
    performance = engine.get_performance_summary()

    table = Table(title="Rules")
    table.add_column("Dimension", style="cyan")
    table.add_column("Total", justify="right")
    table.add_column("Active", justify="right")
    for rule_type in summary["processing_order"]:
        counts = summary["type_counts"][rule_type]
        table.add_row(rule_type, str(counts["total"]), str(counts["active"]))
    console.print(table)

    console.print(Panel.fit(
        f"Processed: {performance['total_processed']}\n"
        f"Matches: {performance['total_matches']}\n"
        f"Match rate: {performance['match_rate']:.2f}\n"
        f"Avg accuracy: {performance['avg_accuracy']:.2f}\n"
        f"Avg confidence: {performance['avg_confidence']:.2f}\n"
        f"Underperformers: {performance['underperformers']}",
        title="Performance",
        border_style="cyan"
    ))

    top = Table(title="Top performers")
    top.add_column("Rule", style="dim")
    top.add_column("Type", style="cyan")
    top.add_column("Accuracy", justify="right")
    top.add_column("Processed", justify="right")
    for record in engine.get_top_performers():
        top.add_row(record.rule_id, record.rule_type or "", f"{record.accuracy_rate:.2f}", str(record.total_processed))
    console.print(top)

    stale = engine.get_stale_rules()
    if stale:
        console.print(Panel.fit(
            "\n".join(
                f"{r.rule_id} ({r.rule_type}): last used {r.last_used_at.isoformat() if r.last_used_at else 'never'}"
                for r in stale
            ),
            title=f"Stale rules ({engine.config.stale_window_days} days)",
            border_style="yellow"
        ))


def cmd_order(engine: ClassificationEngine, rule_types: Optional[List[str]]) -> None:
    if rule_types:
        engine.set_processing_order(rule_types)
    console.print(Panel.fit(" -> ".join(engine.get_processing_order()), title="Processing order", border_style="cyan"))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Vigil CLI")
    parser.add_argument("--config", help="Path to JSON config file")
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    classify_parser = subparsers.add_parser("classify", help="Classify alert text")
    classify_parser.add_argument("texts", nargs="+", help="Alert text(s) to classify")
    classify_parser.add_argument("--source-type", help="Alert source used to filter rules")

    test_parser = subparsers.add_parser("test", help="Run all active rules against text (or the sample alerts)")
    test_parser.add_argument("text", nargs="?", help="Text to test; omit to run the built-in samples")
    test_parser.add_argument("--record", action="store_true", default=None, help="Record results in performance counters")

    import_parser = subparsers.add_parser("import", help="Import rules from a YAML file or directory")
    import_parser.add_argument("path")
    import_parser.add_argument("--author", help="Recorded as created_by")

    export_parser = subparsers.add_parser("export", help="Export rules as YAML")
    export_parser.add_argument("--output", help="Output file; prints to stdout when omitted")
    export_parser.add_argument("--rule-type", help="Restrict to one dimension")

    subparsers.add_parser("stats", help="Show rule counts and performance analytics")

    order_parser = subparsers.add_parser("order", help="Show or set the processing order")
    order_parser.add_argument("rule_types", nargs="*", help="New order, e.g. severity category impact source")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    try:
        config = ConfigManager(args.config).load()
        setup_logging(config.system.log_level)
        banner("Vigil", f"Rule store: {config.database.path}")

        with VigilSystem(config) as system:
            engine = system.engine
            if args.command == "classify":
                cmd_classify(engine, args.texts, args.source_type)
            elif args.command == "test":
                cmd_test(engine, args.text, args.record)
            elif args.command == "import":
                cmd_import(engine, args.path, args.author)
            elif args.command == "export":
                cmd_export(engine, args.output, args.rule_type)
            elif args.command == "stats":
                cmd_stats(engine)
            elif args.command == "order":
                cmd_order(engine, args.rule_types)

    except VigilError as e:
        logger.debug("CLI error", exc_info=True)
        console.print(error_panel(e.message, e.context.get("errors", [])))
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
