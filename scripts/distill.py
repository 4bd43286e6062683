#!/usr/bin/env python3
"""
Command-line wrapper for the knowledge distiller.

Extracts, scores and migrates the best agent memories into the golden collection.
"""

import argparse
import json
import sys
from pathlib import Path

# Add repo root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from distiller.core.config import (
    DEFAULT_AGENTS,
    VERSION,
    ConfigurationError,
    DistillerSettings,
    build_run_config,
    get_memory_store,
)
from distiller.core.distiller import DistillCancelled, KnowledgeDistiller
from distiller.vector.index import StoreError
from util.logging import logger


def print_report(report, dry_run: bool) -> None:
    print("\n=== Agent Knowledge Distiller Report ===")
    print(f"Timestamp: {report.timestamp}")
    print(f"Mode: {'DRY RUN' if dry_run else 'WRITE'}")
    print(f"Scoring: {report.scoring_method}")
    print(f"Total processed: {report.total_processed}")
    print(f"Total kept: {report.total_kept}")
    print(f"Total discarded: {report.total_discarded}")

    for agent, stats in report.by_agent.items():
        print(f"\n[{agent}] processed={stats.processed}, kept={stats.kept}, prefiltered={stats.prefiltered}")
        for memory in stats.top_memories:
            print(f"  - ({memory.score}) [{memory.category}] {memory.text}")

    if report.snapshot_created:
        print(f"\nSnapshot: {report.snapshot_created}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="agent-knowledge-distiller",
        description="Extract and distill the best knowledge from agent memories",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s distill --dry-run                  # Score and report, write nothing
  %(prog)s distill --agent trader --llm       # LLM scoring for one agent
  %(prog)s distill --min-score 70 --snapshot  # Write and snapshot afterwards
  %(prog)s report                             # Top memories per agent

Environment variables:
- QDRANT_HOST / QDRANT_PORT / QDRANT_COLLECTION / GOLDEN_COLLECTION
- SNAPSHOT_DIR (default ./snapshots)
- LLM_SCORING_ENABLED / LLM_PROVIDER / LLM_BASE_URL / LLM_API_KEY / LLM_MODEL / LLM_BATCH_SIZE
        """
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    subparsers = parser.add_subparsers(dest="command", required=True)

    distill_parser = subparsers.add_parser("distill", help="Extract and score golden knowledge from agent memories")
    distill_parser.add_argument("--agent", help=f"Process a single agent ({'/'.join(DEFAULT_AGENTS)})")
    distill_parser.add_argument("--min-score", type=int, help="Minimum quality score (default: 60)")
    distill_parser.add_argument("--max-per-agent", type=int, help="Max golden memories per agent (default: 100)")
    distill_parser.add_argument("--dry-run", "-n", action="store_true", help="Score and report without writing to golden collection")
    distill_parser.add_argument("--snapshot", action="store_true", help="Create snapshot after distill")
    distill_parser.add_argument("--llm", action="store_true", help="Use LLM scoring for this run")
    distill_parser.add_argument("--rule-only", action="store_true", help="Force rule-based scoring only")
    distill_parser.add_argument("--json", action="store_true", help="Print the report as JSON")

    report_parser = subparsers.add_parser("report", help="Show statistics and top memories per agent")
    report_parser.add_argument("--agent", help=f"Process a single agent ({'/'.join(DEFAULT_AGENTS)})")
    report_parser.add_argument("--json", action="store_true", help="Print the report as JSON")

    subparsers.add_parser("snapshot", help="Create a snapshot of the golden collection")
    subparsers.add_parser("snapshots", help="List snapshots of the golden collection")

    return parser


def run_command(args, settings: DistillerSettings) -> int:
    if getattr(args, "llm", False):
        settings = settings.with_llm_scoring(True)
    if getattr(args, "rule_only", False):
        settings = settings.with_llm_scoring(False)

    agents = [args.agent] if getattr(args, "agent", None) else list(DEFAULT_AGENTS)

    if args.command == "distill":
        # Validate everything before touching the store
        run_config = build_run_config(
            agents=agents,
            min_score=args.min_score,
            max_per_agent=args.max_per_agent,
            dry_run=args.dry_run,
            create_snapshot=args.snapshot,
            force_rule_only=args.rule_only,
        )
        distiller = KnowledgeDistiller(get_memory_store(settings), settings)
        report = distiller.distill(run_config)
        if args.json:
            print(json.dumps(report.to_dict(), ensure_ascii=False, indent=2))
        else:
            print_report(report, run_config.dry_run)

    elif args.command == "report":
        distiller = KnowledgeDistiller(get_memory_store(settings), settings)
        report = distiller.build_summary_report(agents)
        if args.json:
            print(json.dumps(report.to_dict(), ensure_ascii=False, indent=2))
        else:
            print_report(report, True)

    elif args.command == "snapshot":
        distiller = KnowledgeDistiller(get_memory_store(settings), settings)
        location = distiller.snapshot_golden()
        print(f"✓ Snapshot created: {location}")

    elif args.command == "snapshots":
        distiller = KnowledgeDistiller(get_memory_store(settings), settings)
        names = distiller.list_golden_snapshots()
        if not names:
            print(f"No snapshots for {settings.golden_collection}")
        for name in names:
            print(name)

    return 0


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = DistillerSettings.from_env().require_valid()
        logger.set_debug(settings.debug)
        return run_command(args, settings)

    except ConfigurationError as e:
        print(f"ERROR: Configuration invalid: {e}")
        return 1
    except StoreError as e:
        print(f"ERROR: Store access failed: {e}")
        return 1
    except DistillCancelled as e:
        print(f"ERROR: Run cancelled: {e}")
        return 1
    except Exception as e:
        print(f"ERROR: Unexpected error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
