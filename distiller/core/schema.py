"""
Distillation data model. Do not implement beyond this file's responsibilities.
Memory records, scored records, the closed category set and run configuration.
"""

from dataclasses import dataclass, field, fields
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, field_validator


NOISE = "noise"

# Closed category set; order is the order categories are presented to the LLM.
CATEGORIES = (
    "trading_win_pattern",
    "trading_loss_lesson",
    "market_insight",
    "bug_fix_pattern",
    "architecture_decision",
    "code_pattern",
    "process_improvement",
    "project_context",
    "system_rule",
    NOISE,
)

ALLOWED_CATEGORIES = frozenset(CATEGORIES)

SCORING_METHODS = ("rule", "llm")


class DistillCancelled(Exception):
    """Raised when a run is cancelled at a group or chunk boundary."""
    pass


@dataclass
class AgentMemory:
    """A raw memory read from the source collection."""
    id: str
    text: str
    namespace: str = ""
    source_agent: str = ""
    source_type: str = ""
    user_id: str = ""
    timestamp: int = 0  # epoch milliseconds
    vector: Optional[List[float]] = None


@dataclass
class ScoredMemory(AgentMemory):
    """An AgentMemory with a quality score, category and tags attached."""
    quality_score: int = 0
    category: str = NOISE
    tags: List[str] = field(default_factory=list)
    distilled_text: Optional[str] = None
    scoring_method: str = "rule"  # rule|llm
    llm_reasoning: Optional[str] = None

    @classmethod
    def from_memory(cls, memory: AgentMemory, **scoring) -> "ScoredMemory":
        """Copy the memory fields and attach scoring results."""
        base = {f.name: getattr(memory, f.name) for f in fields(AgentMemory)}
        base.update(scoring)
        return cls(**base)

    def to_payload(self) -> dict:
        """Payload written to the golden collection."""
        return {
            "text": self.text,
            "distilledText": self.distilled_text,
            "namespace": self.namespace,
            "source_agent": self.source_agent,
            "source_type": self.source_type,
            "userId": self.user_id,
            "timestamp": self.timestamp,
            "qualityScore": self.quality_score,
            "category": self.category,
            "tags": list(self.tags),
            "scoringMethod": self.scoring_method,
            "llmReasoning": self.llm_reasoning,
        }


class RunConfig(BaseModel):
    """Validated configuration for one distillation run."""
    model_config = ConfigDict(frozen=True)

    agents: List[str]
    min_quality_score: int
    max_output_per_agent: int
    categories: List[str]
    dry_run: bool = False
    create_snapshot: bool = False
    force_rule_only: bool = False

    @field_validator('agents')
    @classmethod
    def agents_must_be_named(cls, v):
        if not v:
            raise ValueError('at least one agent is required')
        for agent in v:
            if not agent or not agent.strip():
                raise ValueError('agent names cannot be empty')
        return v

    @field_validator('max_output_per_agent')
    @classmethod
    def max_output_must_not_be_negative(cls, v):
        if v < 0:
            raise ValueError('max_output_per_agent must be >= 0')
        return v

    @field_validator('categories')
    @classmethod
    def categories_must_be_known(cls, v):
        unknown = [c for c in v if c not in ALLOWED_CATEGORIES]
        if unknown:
            raise ValueError(f'unknown categories: {unknown}; must be one of: {list(CATEGORIES)}')
        return v

    def unique_agents(self) -> List[str]:
        """Agents in configuration order with duplicates dropped."""
        seen = set()
        ordered = []
        for agent in self.agents:
            if agent not in seen:
                seen.add(agent)
                ordered.append(agent)
        return ordered
