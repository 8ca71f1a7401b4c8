"""RecallMesh CLI -- inspect and drive the learning layer from a shell.

Provides ``remember``, ``search``, ``predict``, ``suggest``, ``feedback``,
``analyze``, ``maintenance``, ``insights``, ``graph`` and ``scheduler``
subcommands so that users can store memories, rate them and watch the
learning layer react without writing Python code.

Usage::

    recallmesh [--db PATH] [--owner ID] [--embedding NAME] [--format table|json] [--verbose] <command>

    recallmesh remember    <text> [--tag TAG ...]
    recallmesh search      <query> [--limit N] [--weighted] [--decay] [--learning] [--min-helpfulness X]
    recallmesh predict     [--recent ID ...] [--context TEXT] [--limit N]
    recallmesh suggest     <context> [--limit N] [--min-confidence X] [--no-reasoning]
    recallmesh feedback    <memory_id> (--helpful | --not-helpful) [--satisfaction X] [--context TEXT]
    recallmesh analyze     [--auto-apply] [--all-owners]
    recallmesh maintenance
    recallmesh insights
    recallmesh graph       <memory_id> [--depth N] [--min-strength X]
    recallmesh scheduler   [--interval-hours H] [--auto-apply] [--once]
"""

from __future__ import annotations

import argparse
import json
import logging
import shutil
import sys
import time
from typing import Any

from .config import LearningConfig
from .core import RecallMesh
from .memory import DEFAULT_OWNER
from .store import MemoryNotFoundError, StoreUnavailableError

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _build_mesh(args: argparse.Namespace) -> RecallMesh:
    """Build a RecallMesh from the global CLI options and the environment."""
    config = LearningConfig.from_env()
    return RecallMesh(
        path=args.db,
        embedding=args.embedding or config.embedding,
        owner_id=args.owner,
        config=config,
    )


def _truncate(text: str, width: int) -> str:
    """Truncate text to *width* characters, adding ``...`` if needed."""
    if len(text) <= width:
        return text
    return text[: max(width - 3, 0)] + "..."


def _text_width(fixed: int) -> int:
    term_width = shutil.get_terminal_size((80, 24)).columns
    return max(20, term_width - fixed)


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False, default=str))


# ---------------------------------------------------------------------------
# Subcommands
# ---------------------------------------------------------------------------


def _cmd_remember(args: argparse.Namespace) -> int:
    with _build_mesh(args) as mesh:
        memory_id = mesh.remember(args.text, tags=args.tag)
    if args.format == "json":
        _print_json({"id": memory_id})
    else:
        print(f"Remembered {memory_id}")
    return 0


def _cmd_search(args: argparse.Namespace) -> int:
    with _build_mesh(args) as mesh:
        result = mesh.search(
            args.query,
            limit=args.limit,
            weight_by_usage=args.weighted,
            decay_old_memories=args.decay,
            learning_mode=args.learning,
            min_helpfulness_score=args.min_helpfulness,
        )

    if args.format == "json":
        _print_json(result.to_dict())
        return 0

    if not result.memories:
        print(f'No memories found matching "{args.query}".')
        return 0

    text_width = _text_width(8 + 2 + 6 + 2 + 5 + 2 + 4 + 2)
    print(f"{'ID':<8}  {'Score':>6}  {'Help.':>5}  {'Hits':>4}  Text")
    print(f"{'─' * 8}  {'─' * 6}  {'─' * 5}  {'─' * 4}  {'─' * text_width}")
    for hit in result.memories:
        mem = hit.memory
        print(
            f"{mem.id[:8]:<8}  {hit.weighted_score:6.3f}  {mem.helpfulness_score:5.2f}  "
            f"{mem.usage_count:3d}x  {_truncate(mem.text.replace(chr(10), ' '), text_width)}"
        )
    print(f'\n{result.count} result(s) for "{args.query}" ({result.search_method})')
    return 0


def _cmd_predict(args: argparse.Namespace) -> int:
    with _build_mesh(args) as mesh:
        predictions = mesh.predict(args.recent or (), context=args.context, limit=args.limit)

    if args.format == "json":
        _print_json([p.to_dict() for p in predictions])
        return 0

    if not predictions:
        print("No predictions.")
        return 0

    text_width = _text_width(8 + 2 + 5 + 2 + 30 + 2)
    print(f"{'ID':<8}  {'Conf.':>5}  {'Reasons':<30}  Text")
    print(f"{'─' * 8}  {'─' * 5}  {'─' * 30}  {'─' * text_width}")
    for p in predictions:
        reasons = _truncate(",".join(p.reasons), 30)
        print(f"{p.memory_id[:8]:<8}  {p.confidence:5.2f}  {reasons:<30}  {_truncate(p.text, text_width)}")
    return 0


def _cmd_suggest(args: argparse.Namespace) -> int:
    with _build_mesh(args) as mesh:
        result = mesh.suggest(
            args.context,
            limit=args.limit,
            min_confidence=args.min_confidence,
            include_reasoning=not args.no_reasoning,
        )

    if args.format == "json":
        data = dict(result)
        data["suggestions"] = [s.to_dict() for s in result["suggestions"]]
        _print_json(data)
        return 0

    if not result["suggestions"]:
        print("No suggestions above the confidence threshold.")
        return 0

    text_width = _text_width(8 + 2 + 5 + 2)
    for s in result["suggestions"]:
        print(f"{s.memory_id[:8]:<8}  {s.suggestion_score:5.2f}  {_truncate(s.text, text_width)}")
        if s.reasoning:
            flags = [k for k in ("frequently_used", "recently_accessed", "high_helpfulness") if s.reasoning.get(k)]
            print(f"          match={s.reasoning['semantic_match']}  {' '.join(flags)}")
    return 0


def _cmd_feedback(args: argparse.Namespace) -> int:
    with _build_mesh(args) as mesh:
        result = mesh.feedback(
            args.memory_id,
            helpful=args.helpful,
            user_satisfaction=args.satisfaction,
            context=args.context,
        )
    if args.format == "json":
        _print_json(result)
    else:
        print(f"Helpfulness of {args.memory_id} is now {result['new_helpfulness_score']:.2f}")
    return 0


def _cmd_analyze(args: argparse.Namespace) -> int:
    with _build_mesh(args) as mesh:
        if args.all_owners:
            data = mesh.miner.run_cycle(auto_apply=args.auto_apply)
        else:
            data = mesh.learning_analyze(auto_apply=args.auto_apply).to_dict()

    if args.format == "json" or args.all_owners:
        _print_json(data)
        return 0

    print(f"Co-access clusters:        {data['clusters_detected']}")
    print(f"Relationship suggestions:  {len(data['relationship_suggestions'])}")
    print(f"Applied:                   {data['applied_count']}")
    print(f"Temporal patterns stored:  {data['temporal_patterns_stored']}")
    print(f"Duplicate groups:          {data['duplicate_groups_found']}")
    print(f"Stale memories:            {data['stale_memory_count']}")
    print(f"Time:                      {data['processing_time_ms']} ms")
    for err in data["errors"]:
        print(f"  step {err['step']} failed: {err['error']}", file=sys.stderr)
    return 0


def _cmd_maintenance(args: argparse.Namespace) -> int:
    with _build_mesh(args) as mesh:
        data = mesh.maintenance_suggestions()

    if args.format == "json":
        _print_json(data)
        return 0

    summary = data["summary"]
    print(f"Duplicates:            {summary['total_duplicates']}")
    for group in data["duplicates"]:
        ids = ", ".join(mid[:8] for mid in group["memory_ids"])
        print(f"  [{group['suggestion']}] {ids}  (similarity {group['similarity']:.2f})")
    print(f"Outdated:              {summary['total_outdated']}")
    for item in data["outdated"]:
        print(f"  {item['id'][:8]}  {_truncate(item['text'], 60)}")
    print(f"Archive candidates:    {summary['total_archive_candidates']}")
    for item in data["archive_candidates"]:
        print(f"  {item['id'][:8]}  {_truncate(item['text'], 60)}")
    print(f"Broken relationships:  {summary['total_broken_relationships']}")
    return 0


def _cmd_insights(args: argparse.Namespace) -> int:
    with _build_mesh(args) as mesh:
        data = mesh.usage_insights()

    if args.format == "json":
        _print_json(data)
        return 0

    summary = data["summary"]
    print(f"Memories:          {summary['total_memories']}")
    print(f"Total accesses:    {summary['total_accesses']}")
    print(f"Avg helpfulness:   {summary['avg_helpfulness']:.2f}")
    print(f"Active (30 days):  {summary['active_memories']}")
    print(f"Stale (90+ days):  {summary['stale_memories']}")
    if data["most_useful_tags"]:
        print("\nMost useful tags:")
        for tag in data["most_useful_tags"]:
            print(f"  {tag['tag']:<20}  {tag['avg_helpfulness']:.2f}  ({tag['count']} memories)")
    return 0


def _cmd_graph(args: argparse.Namespace) -> int:
    with _build_mesh(args) as mesh:
        data = mesh.relationship_graph(args.memory_id, depth=args.depth, min_strength=args.min_strength)

    if args.format == "json":
        _print_json(data)
        return 0

    texts = {node["id"]: node["text"] for node in data["nodes"]}
    print(f"{data['stats']['node_count']} node(s), {data['stats']['edge_count']} edge(s)")
    for edge in data["edges"]:
        target = _truncate(texts.get(edge["to"], "(deleted)"), 50)
        print(f"  {edge['from'][:8]} -{edge['type']}({edge['strength']:.2f})-> {edge['to'][:8]}  {target}")
    return 0


def _cmd_scheduler(args: argparse.Namespace) -> int:
    with _build_mesh(args) as mesh:
        if args.once:
            result = mesh.miner.run_cycle(auto_apply=args.auto_apply)
            _print_json(result)
            return 0
        scheduler = mesh.start_scheduler(interval_hours=args.interval_hours, auto_apply=args.auto_apply)
        print(
            f"Learning scheduler running every {scheduler.interval_seconds / 3600:g} hour(s). "
            "Press Ctrl-C to stop."
        )
        try:
            while scheduler.is_running:
                time.sleep(1)
        except KeyboardInterrupt:
            print("\nStopping...")
    return 0


# ---------------------------------------------------------------------------
# Argument parser
# ---------------------------------------------------------------------------


def _unit_float(value: str) -> float:
    number = float(value)
    if not 0.0 <= number <= 1.0:
        raise argparse.ArgumentTypeError(f"{value} is not between 0 and 1")
    return number


def _build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="recallmesh",
        description="RecallMesh -- a memory store that learns which memories matter.",
    )
    parser.add_argument("--db", default=None, help="Path to the SQLite database file.")
    parser.add_argument(
        "--owner",
        default=DEFAULT_OWNER,
        help=f"Owner whose memories are used (default: {DEFAULT_OWNER}).",
    )
    parser.add_argument(
        "--embedding",
        default=None,
        help="Embedding provider: local, ollama, openai or none (default: $RECALLMESH_EMBEDDING or none).",
    )
    parser.add_argument(
        "--format",
        choices=["table", "json"],
        default="table",
        help="Output format (default: table).",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Show library log messages.")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # -- remember -----------------------------------------------------
    p_remember = subparsers.add_parser("remember", help="Store a new memory.")
    p_remember.add_argument("text", help="Memory text.")
    p_remember.add_argument("--tag", action="append", default=[], help="Tag to attach (repeatable).")

    # -- search -------------------------------------------------------
    p_search = subparsers.add_parser("search", help="Search and rank memories.")
    p_search.add_argument("query", help="Search text.")
    p_search.add_argument("--limit", type=int, default=10, help="Maximum results (default: 10).")
    p_search.add_argument("--weighted", action="store_true", help="Blend in usage, recency and helpfulness.")
    p_search.add_argument("--decay", action="store_true", help="Boost recent and penalise old memories.")
    p_search.add_argument("--learning", action="store_true", help="Record the results as used.")
    p_search.add_argument(
        "--min-helpfulness",
        type=_unit_float,
        default=None,
        help="Drop memories below this helpfulness score.",
    )

    # -- predict ------------------------------------------------------
    p_predict = subparsers.add_parser("predict", help="Predict memories needed next.")
    p_predict.add_argument("--recent", action="append", default=[], help="Recently used memory id (repeatable).")
    p_predict.add_argument("--context", default=None, help="What the agent is doing.")
    p_predict.add_argument("--limit", type=int, default=10, help="Maximum predictions (default: 10).")

    # -- suggest ------------------------------------------------------
    p_suggest = subparsers.add_parser("suggest", help="Suggest memories for a context.")
    p_suggest.add_argument("context", help="What the agent is doing.")
    p_suggest.add_argument("--limit", type=int, default=5, help="Maximum suggestions (default: 5).")
    p_suggest.add_argument(
        "--min-confidence",
        type=_unit_float,
        default=0.6,
        help="Minimum suggestion score (default: 0.6).",
    )
    p_suggest.add_argument("--no-reasoning", action="store_true", help="Omit the reasoning breakdown.")

    # -- feedback -----------------------------------------------------
    p_feedback = subparsers.add_parser("feedback", help="Rate a memory.")
    p_feedback.add_argument("memory_id", help="Memory being rated.")
    verdict = p_feedback.add_mutually_exclusive_group(required=True)
    verdict.add_argument("--helpful", dest="helpful", action="store_true", help="The memory helped.")
    verdict.add_argument("--not-helpful", dest="helpful", action="store_false", help="The memory did not help.")
    p_feedback.add_argument("--satisfaction", type=_unit_float, default=None, help="Satisfaction between 0 and 1.")
    p_feedback.add_argument("--context", default=None, help="Where the memory was used.")

    # -- analyze ------------------------------------------------------
    p_analyze = subparsers.add_parser("analyze", help="Run the pattern miner.")
    p_analyze.add_argument("--auto-apply", action="store_true", help="Persist strong relationship suggestions.")
    p_analyze.add_argument("--all-owners", action="store_true", help="Analyse every owner in the database.")

    # -- maintenance --------------------------------------------------
    subparsers.add_parser("maintenance", help="List duplicates, outdated and archivable memories.")

    # -- insights -----------------------------------------------------
    subparsers.add_parser("insights", help="Summarise how memories are used.")

    # -- graph --------------------------------------------------------
    p_graph = subparsers.add_parser("graph", help="Show the relationship graph around a memory.")
    p_graph.add_argument("memory_id", help="Root memory.")
    p_graph.add_argument("--depth", type=int, default=1, help="Hops to expand, at most 3 (default: 1).")
    p_graph.add_argument(
        "--min-strength",
        type=_unit_float,
        default=0.6,
        help="Minimum edge strength (default: 0.6).",
    )

    # -- scheduler ----------------------------------------------------
    p_scheduler = subparsers.add_parser("scheduler", help="Run periodic learning in the foreground.")
    p_scheduler.add_argument("--interval-hours", type=float, default=None, help="Hours between cycles.")
    p_scheduler.add_argument("--auto-apply", action="store_true", help="Persist strong relationship suggestions.")
    p_scheduler.add_argument("--once", action="store_true", help="Run a single cycle and exit.")

    return parser


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> int:
    """CLI entry point.

    Args:
        argv: Command-line arguments. Defaults to ``sys.argv[1:]``.

    Returns:
        Exit code (0 for success, 1 for errors).
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    # Library logging stays quiet unless asked for.
    logging.basicConfig(format="%(asctime)s [%(levelname)s] %(name)s: %(message)s", stream=sys.stderr)
    logging.getLogger("recallmesh").setLevel(logging.INFO if args.verbose else logging.WARNING)

    if args.command is None:
        parser.print_help()
        return 0

    commands: dict[str, Any] = {
        "remember": _cmd_remember,
        "search": _cmd_search,
        "predict": _cmd_predict,
        "suggest": _cmd_suggest,
        "feedback": _cmd_feedback,
        "analyze": _cmd_analyze,
        "maintenance": _cmd_maintenance,
        "insights": _cmd_insights,
        "graph": _cmd_graph,
        "scheduler": _cmd_scheduler,
    }

    handler = commands.get(args.command)
    if handler is None:
        parser.print_help()
        return 1

    try:
        result: int = handler(args)
    except (ValueError, MemoryNotFoundError, StoreUnavailableError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    return result


if __name__ == "__main__":
    sys.exit(main())
