"""
Run report returned to callers of a distillation.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .schema import ScoredMemory


PREVIEW_COUNT = 5
PREVIEW_CHARS = 160


def truncate(text: str, length: int) -> str:
    """Cut text to length, ending in '...' when shortened."""
    return f"{text[:length - 3]}..." if len(text) > length else text


@dataclass
class MemoryPreview:
    text: str
    score: int
    category: str

    @classmethod
    def from_scored(cls, memory: ScoredMemory) -> "MemoryPreview":
        return cls(
            text=truncate(memory.text, PREVIEW_CHARS),
            score=memory.quality_score,
            category=memory.category,
        )


@dataclass
class AgentReport:
    """Per-agent breakdown."""
    processed: int = 0
    kept: int = 0
    prefiltered: int = 0  # rejected before scoring
    top_memories: List[MemoryPreview] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "processed": self.processed,
            "kept": self.kept,
            "prefiltered": self.prefiltered,
            "topMemories": [
                {"text": p.text, "score": p.score, "category": p.category}
                for p in self.top_memories
            ],
        }


@dataclass
class RunReport:
    """Aggregate outcome of one distillation run."""
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    total_processed: int = 0
    total_kept: int = 0
    total_discarded: int = 0
    by_agent: Dict[str, AgentReport] = field(default_factory=dict)
    scoring_method: str = "rule"
    dry_run: bool = False
    snapshot_created: Optional[str] = None

    def add_agent(self, agent: str, agent_report: AgentReport) -> None:
        self.by_agent[agent] = agent_report
        self.total_processed += agent_report.processed
        self.total_kept += agent_report.kept
        self.total_discarded = self.total_processed - self.total_kept

    def to_dict(self) -> Dict[str, Any]:
        """Convert report to dictionary for serialization."""
        data = {
            "timestamp": self.timestamp,
            "totalProcessed": self.total_processed,
            "totalKept": self.total_kept,
            "totalDiscarded": self.total_discarded,
            "scoringMethod": self.scoring_method,
            "dryRun": self.dry_run,
            "byAgent": {agent: r.to_dict() for agent, r in self.by_agent.items()},
        }
        if self.snapshot_created:
            data["snapshotCreated"] = self.snapshot_created
        return data
