"""CLI interface for pii-annotator.

Usage:
    # Learn rules from examples (args, or a JSON array on stdin)
    pii-annotator learn 123-45-6789 987-65-4321

    # Match / highlight stdin text with a patterns file (JSON array of patterns)
    cat doc.txt | pii-annotator match --patterns patterns.json
    cat doc.txt | pii-annotator highlight --patterns patterns.json > doc.html

    # Store operations (SQLite, see --db)
    pii-annotator save --patterns patterns.json
    pii-annotator feedback --pattern-id <uuid> --text "555-1234" --negative
    pii-annotator refined
    pii-annotator report --pattern-id <uuid>

    # Run the HTTP store sidecar
    pii-annotator serve --port 18792

Refinement data from the store is applied to match/highlight output.
"""

from __future__ import annotations
import argparse
import json
import os
import sys
from pathlib import Path
from typing import Any

from .feedback_sqlite import SqliteFeedbackStore
from .learner import learn, relearn
from .logger import setup_logging
from .matcher import find_matches
from .refinement import apply_refinement
from .renderer import render
from .types import FeedbackRecord, FeedbackType, PatternDefinition

DEFAULT_DB = os.environ.get(
    "PII_ANNOTATOR_DB",
    str(Path.home() / ".pii-annotator" / "patterns.db"),
)
DEFAULT_PORT = int(os.environ.get("PII_ANNOTATOR_PORT", "18792"))


def _dump(data: Any) -> None:
    json.dump(data, sys.stdout, indent=2, ensure_ascii=False)
    sys.stdout.write("\n")


def _load_patterns(path: str) -> list[PatternDefinition]:
    with open(path, encoding="utf-8") as f:
        raw = json.load(f)
    if isinstance(raw, dict):
        raw = raw.get("patterns", [])
    patterns = [PatternDefinition.from_dict(p) for p in raw]
    return [relearn(p) if p.examples and not p.regex else p for p in patterns]


def _open_store(args: argparse.Namespace) -> SqliteFeedbackStore:
    return SqliteFeedbackStore(
        db_path=args.db,
        auto_refine_threshold=args.auto_refine_threshold,
    )


def cmd_learn(args: argparse.Namespace) -> None:
    """Learn rules from examples."""
    try:
        examples = args.examples or json.loads(sys.stdin.read())
        rules = learn(examples)
    except ValueError as e:
        sys.stderr.write(f"error: {e}\n")
        sys.exit(2)
    _dump([
        {"regex": r.regex, "name": r.name, "confidence": r.confidence, "format": r.format}
        for r in rules
    ])


def _refined_matches(args: argparse.Namespace, text: str):
    patterns = _load_patterns(args.patterns)
    matches = find_matches(text, patterns)
    store = _open_store(args)
    try:
        return apply_refinement(matches, store.all_refined())
    finally:
        store.close()


def cmd_match(args: argparse.Namespace) -> None:
    """Print the spans found in stdin text."""
    text = sys.stdin.read()
    _dump([m.to_dict() for m in _refined_matches(args, text)])


def cmd_highlight(args: argparse.Namespace) -> None:
    """Render stdin text as highlighted HTML."""
    text = sys.stdin.read()
    sys.stdout.write(render(text, _refined_matches(args, text)))
    sys.stdout.write("\n")


def cmd_save(args: argparse.Namespace) -> None:
    """Save a patterns file to the store."""
    store = _open_store(args)
    saved = store.save_patterns(_load_patterns(args.patterns))
    _dump([p.to_dict() for p in saved])
    store.close()


def cmd_feedback(args: argparse.Namespace) -> None:
    """Record a positive/negative verdict on a matched text."""
    store = _open_store(args)
    record = FeedbackRecord(
        pattern_id=args.pattern_id,
        feedback_type=FeedbackType.NEGATIVE if args.negative else FeedbackType.POSITIVE,
        matched_text=args.text,
        original_confidence=args.confidence,
        data_source_id=args.data_source_id,
    )
    try:
        store.submit_feedback(record)
    except ValueError as e:
        sys.stderr.write(f"error: {e}\n")
        sys.exit(2)
    finally:
        store.close()
    _dump({"success": True, "message": "Feedback recorded successfully"})


def cmd_refined(args: argparse.Namespace) -> None:
    """Dump refinement data for every stored pattern."""
    store = _open_store(args)
    _dump([rp.to_dict() for rp in store.all_refined().values()])
    store.close()


def cmd_report(args: argparse.Namespace) -> None:
    """Feedback analysis and suggestions for one pattern."""
    store = _open_store(args)
    report = store.refinement_report(args.pattern_id)
    store.close()
    if report is None:
        sys.stderr.write(f"error: pattern {args.pattern_id} not found\n")
        sys.exit(1)
    _dump(report)


def cmd_serve(args: argparse.Namespace) -> None:
    from .server import serve
    serve(port=args.port, db_path=args.db, auto_refine_threshold=args.auto_refine_threshold)


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="pii-annotator",
        description="Learn, match and highlight sensitive-data patterns",
    )
    parser.add_argument("--db", default=DEFAULT_DB, help="SQLite pattern store path")
    parser.add_argument("--auto-refine-threshold", type=int, default=2,
                        help="Negative verdicts before a text is excluded")
    parser.add_argument("--log-level", default=os.environ.get("PII_ANNOTATOR_LOG_LEVEL", "WARNING"))

    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("learn", help="Learn rules from examples")
    p.add_argument("examples", nargs="*", help="Examples (default: JSON array on stdin)")

    for name, help_text in (("match", "Match stdin text (JSON spans)"),
                            ("highlight", "Highlight stdin text (HTML)"),
                            ("save", "Save patterns to the store")):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("--patterns", required=True, help="JSON file of patterns")

    p = sub.add_parser("feedback", help="Submit feedback on a match")
    p.add_argument("--pattern-id", required=True)
    p.add_argument("--text", required=True, help="Matched text")
    p.add_argument("--confidence", type=float, default=None)
    p.add_argument("--data-source-id", default=None)
    verdict = p.add_mutually_exclusive_group(required=True)
    verdict.add_argument("--positive", action="store_true")
    verdict.add_argument("--negative", action="store_true")

    sub.add_parser("refined", help="Dump refinement data")

    p = sub.add_parser("report", help="Refinement report for a pattern")
    p.add_argument("--pattern-id", required=True)

    p = sub.add_parser("serve", help="Run the HTTP store sidecar")
    p.add_argument("--port", type=int, default=DEFAULT_PORT)

    args = parser.parse_args()
    setup_logging(args.log_level)

    cmds = {
        "learn": cmd_learn,
        "match": cmd_match,
        "highlight": cmd_highlight,
        "save": cmd_save,
        "feedback": cmd_feedback,
        "refined": cmd_refined,
        "report": cmd_report,
        "serve": cmd_serve,
    }
    cmds[args.command](args)


if __name__ == "__main__":
    main()
