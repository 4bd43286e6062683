"""
Selection and aggregation engine.
Fetches each agent's memories, pre-filters, scores, ranks and caps them, then
optionally writes the survivors to the golden collection and snapshots it.
"""

import threading
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from distiller.scoring import select_scorer
from distiller.vector.types import VectorGeometry
from util.logging import logger

from .config import DEFAULT_CATEGORIES, DistillerSettings
from .prefilter import filter_memories
from .report import AgentReport, MemoryPreview, PREVIEW_COUNT, RunReport
from .schema import NOISE, DistillCancelled, RunConfig, ScoredMemory


SUMMARY_MIN_SCORE = 60
SUMMARY_MAX_PER_AGENT = 5


def rank_key(memory: ScoredMemory) -> Tuple[int, int, str]:
    """Score descending, then newest first, then id ascending."""
    return (-memory.quality_score, -memory.timestamp, memory.id)


def is_eligible(memory: ScoredMemory, run_config: RunConfig) -> bool:
    return (
        memory.quality_score >= run_config.min_quality_score
        and memory.category != NOISE
        and memory.category in run_config.categories
    )


def select_top(scored: Sequence[ScoredMemory], run_config: RunConfig) -> Tuple[List[ScoredMemory], List[ScoredMemory]]:
    """Return (eligible, kept): kept is eligible ranked and capped per agent."""
    eligible = [m for m in scored if is_eligible(m, run_config)]
    ranked = sorted(eligible, key=rank_key)
    return eligible, ranked[:run_config.max_output_per_agent]


class KnowledgeDistiller:
    """Runs distillation passes against a memory store."""

    def __init__(self, store, settings: DistillerSettings, transport=None):
        self.store = store
        self.settings = settings
        self.transport = transport

    def _select_scorer(self, run_config: RunConfig):
        return select_scorer(self.settings, force_rule_only=run_config.force_rule_only, transport=self.transport)

    def distill(self, run_config: RunConfig, cancel_event: Optional[threading.Event] = None,
                progress: Optional[Callable[[str, int, int], None]] = None) -> RunReport:
        """
        Run one distillation pass.

        Agents are processed one at a time in configuration order. Any store
        failure aborts the run and propagates; no partial report is returned.
        """
        scorer = self._select_scorer(run_config)
        report = RunReport(scoring_method=scorer.method, dry_run=run_config.dry_run)
        selected: Dict[str, List[ScoredMemory]] = {}

        logger.log_distill_run("started", {
            "agents": run_config.unique_agents(),
            "scoring_method": scorer.method,
            "dry_run": run_config.dry_run,
        })

        try:
            for agent in run_config.unique_agents():
                if cancel_event is not None and cancel_event.is_set():
                    raise DistillCancelled(f"Cancelled before agent '{agent}'")

                memories = self.store.fetch_all(agent)
                accepted = filter_memories(memories)
                logger.log_prefilter(agent, len(memories), len(accepted))

                agent_progress = None
                if progress:
                    agent_progress = lambda done, total, _agent=agent: progress(_agent, done, total)
                scored = scorer.score_batch(accepted, progress=agent_progress, cancel_event=cancel_event)

                eligible, top = select_top(scored, run_config)
                selected[agent] = top
                logger.log_group_result(agent, len(scored), len(top), len(eligible))
                for memory in top:
                    logger.log_memory_preview("distill.keep", memory.id, memory.text, {
                        "score": memory.quality_score, "category": memory.category
                    })

                report.add_agent(agent, AgentReport(
                    processed=len(scored),
                    kept=len(top),
                    prefiltered=len(memories) - len(accepted),
                    top_memories=[MemoryPreview.from_scored(m) for m in top[:PREVIEW_COUNT]],
                ))

            flat = [m for agent in selected for m in selected[agent]]

            if not run_config.dry_run:
                self.ensure_golden_collection()
                self.store.upsert(self.store.golden_collection, flat)

                if run_config.create_snapshot:
                    report.snapshot_created = self.store.snapshot(self.store.golden_collection)

        except DistillCancelled as e:
            logger.log_distill_run("cancelled", {"reason": str(e)})
            raise
        except Exception as e:
            logger.log_distill_run("failed", {"error": str(e)})
            raise

        logger.log_distill_run("completed", {
            "processed": report.total_processed,
            "kept": report.total_kept,
            "discarded": report.total_discarded,
            "snapshot": report.snapshot_created,
        })
        return report

    def build_summary_report(self, agents: List[str]) -> RunReport:
        """Dry-run, rule-only pass keeping the top few memories per agent."""
        return self.distill(RunConfig(
            agents=agents,
            min_quality_score=SUMMARY_MIN_SCORE,
            max_output_per_agent=SUMMARY_MAX_PER_AGENT,
            categories=list(DEFAULT_CATEGORIES),
            dry_run=True,
            create_snapshot=False,
            force_rule_only=True,
        ))

    def ensure_golden_collection(self) -> None:
        """Create the golden collection with the source geometry, or the default one."""
        geometry = self.store.get_geometry(self.store.source_collection)
        if geometry is None:
            geometry = VectorGeometry(
                size=self.settings.default_vector_size,
                distance=self.settings.default_vector_distance,
            )
        self.store.ensure_collection(self.store.golden_collection, geometry)

    def snapshot_golden(self) -> str:
        """Ensure the golden collection exists and snapshot it."""
        self.ensure_golden_collection()
        return self.store.snapshot(self.store.golden_collection)

    def list_golden_snapshots(self) -> List[str]:
        return self.store.list_snapshots(self.store.golden_collection)


def distill(run_config: RunConfig, store, settings: DistillerSettings, transport=None,
            cancel_event: Optional[threading.Event] = None) -> RunReport:
    """Run one distillation pass with a throwaway KnowledgeDistiller."""
    return KnowledgeDistiller(store, settings, transport=transport).distill(run_config, cancel_event=cancel_event)


def build_summary_report(agents: List[str], store, settings: DistillerSettings) -> RunReport:
    return KnowledgeDistiller(store, settings).build_summary_report(agents)
