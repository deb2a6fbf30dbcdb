"""
cli.py - command line front end for the learning engine
Commands:
- learn FILE [--context LABEL]   learn a dialogue log, one document per line
- predict TEXT                   predict the context label of a message
- select --context TEXT CAND...  pick a vocabulary term among candidates
- feedback USER TERM RATING TEXT record a rating for a selected term
- stats                          show model statistics
All state is loaded from and saved to --data-dir. Uses Rich for tables.
"""

import argparse
import os
import sys
from dataclasses import replace
from typing import List, Optional

from rich.console import Console
from rich.table import Table
from rich import box

from adaptive_vocabulary.engine import LearningEngine, PersistStatus
from adaptive_vocabulary.utils.config_manager import Config
from adaptive_vocabulary.utils.logger_utils import configure_logging

console = Console()


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="adaptive_vocabulary", description="Adaptive vocabulary learning engine")
    p.add_argument("--data-dir", default="data", help="directory holding model state")
    p.add_argument("--config", default=None, help="optional JSON config file")
    p.add_argument("--log-level", default="WARNING")
    sub = p.add_subparsers(dest="command", required=True)

    learn = sub.add_parser("learn", help="learn a dialogue log (one document per line)")
    learn.add_argument("file")
    learn.add_argument("--context", default=None, help="context label for every line")

    predict = sub.add_parser("predict", help="predict the context label of TEXT")
    predict.add_argument("text")

    select = sub.add_parser("select", help="select a vocabulary term among candidates")
    select.add_argument("--context", required=True, help="context text")
    select.add_argument("--strategy", default=None)
    select.add_argument("candidates", nargs="+")

    feedback = sub.add_parser("feedback", help="record a rating for a term")
    feedback.add_argument("user")
    feedback.add_argument("term")
    feedback.add_argument("rating", type=float)
    feedback.add_argument("text")

    sub.add_parser("stats", help="show model statistics")
    return p


def make_engine(data_dir: str, config_path: Optional[str] = None) -> LearningEngine:
    cfg = Config(config_path).engine if config_path else Config(os.path.join(data_dir, "config.json")).engine
    cfg = replace(cfg, persistence=replace(cfg.persistence, data_dir=data_dir, durability="sync"))
    engine = LearningEngine(cfg)
    engine.load()
    return engine


# COMMANDS ---------------------------------------------------------------------
def cmd_learn(engine: LearningEngine, args) -> int:
    try:
        with open(args.file, "r", encoding="utf8") as f:
            lines = f.read().splitlines()
    except OSError as e:
        console.print(f"[red]Cannot read {args.file}:[/red] {e}")
        return 1
    n = engine.learn_lines(lines, args.context)
    console.print(f"[green]Learned {n} document(s)[/green] from {args.file}")
    return 0


def cmd_predict(engine: LearningEngine, args) -> int:
    pred = engine.ngram.predict_context(args.text)
    table = Table(title="Context prediction", box=box.SIMPLE)
    table.add_column("Label", style="cyan")
    table.add_column("Confidence", justify="right")
    table.add_row(pred.label, f"{pred.confidence:.3f}")
    console.print(table)
    return 0


def cmd_select(engine: LearningEngine, args) -> int:
    options = {"strategy": args.strategy} if args.strategy else None
    res = engine.select_vocabulary(args.context, args.candidates, options)
    table = Table(title=f"Selection ({res.strategy_used})", box=box.SIMPLE)
    table.add_column("Term", style="cyan")
    table.add_column("Score", justify="right")
    for term, score in res.scores:
        mark = "[bold green]*[/bold green] " if term == res.selected_term else ""
        table.add_row(f"{mark}{term}", f"{score:.3f}")
    console.print(table)
    console.print(f"selected: [bold]{res.selected_term}[/bold]  confidence {res.confidence:.2f}")
    return 0


def cmd_feedback(engine: LearningEngine, args) -> int:
    res = engine.record_feedback(args.user, args.term, args.rating, args.text, durability="sync")
    out = res.outcome
    console.print(f"[cyan]{out.user_id}[/cyan] rated [bold]{out.term}[/bold] {out.rating:.2f} "
                  f"in context '{out.context_label}' (quality {out.quality_score:.3f})")
    if res.persist is PersistStatus.FAILED:
        console.print("[red]Saving failed; the rating is kept in memory only.[/red]")
        return 1
    return 0


def cmd_stats(engine: LearningEngine, args) -> int:
    report = engine.stats_report()
    for section, values in report.items():
        table = Table(title=section, box=box.SIMPLE)
        table.add_column("Key", style="cyan")
        table.add_column("Value")
        for k, v in values.items():
            table.add_row(str(k), str(v))
        console.print(table)
    return 0


COMMANDS = {
    "learn": cmd_learn,
    "predict": cmd_predict,
    "select": cmd_select,
    "feedback": cmd_feedback,
    "stats": cmd_stats,
}


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)
    engine = make_engine(args.data_dir, args.config)
    try:
        return COMMANDS[args.command](engine, args)
    finally:
        engine.close()


if __name__ == "__main__":
    sys.exit(main())
