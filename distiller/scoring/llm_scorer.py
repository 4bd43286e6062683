"""
Scoring stage only. Do not implement beyond this file's responsibilities.
Batch LLM scorer - one external request per chunk, heuristic fallback on any failure.
"""

import json
import math
import re
import time
from typing import Any, Callable, Dict, List, Optional, Sequence

from pydantic import BaseModel, ValidationError, field_validator

from distiller.core.schema import ALLOWED_CATEGORIES, AgentMemory, DistillCancelled, NOISE, ScoredMemory
from util.logging import logger

from .heuristic import score_memory
from .transports import LLMTransport


PREVIEW_CHARS = 500
FALLBACK_TAG = "llm-fallback"
LLM_TAG = "llm-scored"

SCORING_PROMPT = """You are an AI Knowledge Quality Evaluator. Score each memory for its long-term value to an AI agent team.

Context: These memories come from an AI trading system with 4 agents:
- trader: Analyzes crypto markets, executes BUY/SELL/HOLD decisions
- fullstack: Builds backend (NestJS/TypeScript), fixes bugs, implements features
- scrum: Project management, planning, orchestration
- assistant: General orchestration, user interaction

For each memory, provide:
1. score (0-100): How valuable is this knowledge for the agent's future performance?
2. category: One of: trading_win_pattern, trading_loss_lesson, market_insight, bug_fix_pattern, architecture_decision, code_pattern, process_improvement, project_context, system_rule, noise
3. reasoning: 1 sentence why this score

Scoring guidelines:
- 90-100: Critical lesson that prevents real money loss or saves days of work
- 70-89: Valuable pattern/insight that improves decision making
- 50-69: Useful context but not directly actionable
- 30-49: Low value, temporary or already outdated info
- 0-29: Noise, test data, system junk, or duplicated info

Respond in JSON array format:
[{"index": 0, "score": 85, "category": "trading_win_pattern", "reasoning": "..."}]"""

_CODE_FENCE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)


def _reject_constant(name: str):
    raise ValueError(f"non-JSON constant {name}")


class LLMScoringError(Exception):
    """Transport or parse failure for one chunk."""
    pass


class LLMScoreEntry(BaseModel):
    index: int
    score: float
    category: str = NOISE
    reasoning: str = "LLM scoring"

    @field_validator('index', 'score', mode='before')
    @classmethod
    def must_be_finite(cls, v):
        value = float(v)
        if not math.isfinite(value):
            raise ValueError('must be finite')
        return value

    @field_validator('category', 'reasoning', mode='before')
    @classmethod
    def coerce_text(cls, v):
        return str(v)


def strip_code_fence(text: str) -> str:
    """Return the body of the first ``` fence, or the text unchanged."""
    fenced = _CODE_FENCE.search(text)
    if fenced and fenced.group(1):
        return fenced.group(1)
    return text


def clamp_score(score: float) -> int:
    if score is None or not math.isfinite(score):
        return 50
    # halves round up
    return min(100, max(0, int(math.floor(score + 0.5))))


def parse_scores(raw_text: str) -> Dict[int, LLMScoreEntry]:
    """
    Parse the reply into entries keyed by index.

    Raises LLMScoringError for malformed JSON, including NaN and Infinity
    literals, or a non-array top level.
    Entries without a finite index and score are dropped; the first entry
    for an index wins.
    """
    cleaned = strip_code_fence(raw_text).strip()
    try:
        parsed = json.loads(cleaned, parse_constant=_reject_constant)
    except ValueError as e:
        raise LLMScoringError(f"LLM response is not valid JSON: {e}") from e

    if not isinstance(parsed, list):
        raise LLMScoringError("LLM response is not a JSON array")

    entries: Dict[int, LLMScoreEntry] = {}
    for item in parsed:
        if not isinstance(item, dict):
            continue
        item = {k: v for k, v in item.items() if v is not None}
        try:
            entry = LLMScoreEntry(**item)
        except (ValidationError, TypeError, ValueError):
            continue
        entries.setdefault(entry.index, entry)

    return entries


def format_batch(batch: Sequence[AgentMemory]) -> str:
    """User payload listing each memory as [idx] agent=<a> ns=<n> | <text>."""
    lines = [
        f"[{idx}] agent={m.source_agent} ns={m.namespace} | {(m.text or '')[:PREVIEW_CHARS]}"
        for idx, m in enumerate(batch)
    ]
    return "Memories to score:\n\n" + "\n\n".join(lines)


def fallback_score(memory: AgentMemory) -> ScoredMemory:
    scored = score_memory(memory)
    scored.tags = scored.tags + [FALLBACK_TAG]
    return scored


class LLMBatchScorer:
    """Scores memories in fixed-size chunks through an LLM transport."""

    method = "llm"

    def __init__(self, transport: LLMTransport, batch_size: int = 10,
                 batch_delay_sec: float = 0.5, sleep: Callable[[float], Any] = time.sleep):
        self.transport = transport
        self.batch_size = max(1, int(batch_size))
        self.batch_delay_sec = batch_delay_sec
        self.sleep = sleep

    def score_batch(self, memories: Sequence[AgentMemory],
                    progress: Optional[Callable[[int, int], None]] = None,
                    cancel_event=None) -> List[ScoredMemory]:
        """Score every memory, same order. Chunks run strictly one after another."""
        results: List[ScoredMemory] = []
        total = len(memories)

        for start in range(0, total, self.batch_size):
            if cancel_event is not None and cancel_event.is_set():
                raise DistillCancelled(f"Cancelled before LLM chunk starting at {start}")

            batch = memories[start:start + self.batch_size]
            results.extend(self.score_chunk(batch, start))

            done = min(start + self.batch_size, total)
            logger.log_scoring_progress(self.method, done, total)
            if progress:
                progress(done, total)

            if done < total and self.batch_delay_sec > 0:
                self.sleep(self.batch_delay_sec)

        return results

    def score_chunk(self, batch: Sequence[AgentMemory], start: int = 0) -> List[ScoredMemory]:
        """Score one chunk; any transport or parse failure falls back for the whole chunk."""
        try:
            raw = self.transport.complete(SCORING_PROMPT, format_batch(batch))
            entries = parse_scores(raw)
        except Exception as e:
            logger.log_llm_fallback(start, len(batch), str(e))
            return [fallback_score(m) for m in batch]

        scored = []
        for idx, memory in enumerate(batch):
            entry = entries.get(idx)
            if entry is None:
                logger.log_llm_fallback(start, len(batch), "no score returned for index", record_id=memory.id)
                scored.append(fallback_score(memory))
                continue

            category = entry.category if entry.category in ALLOWED_CATEGORIES else NOISE
            scored.append(ScoredMemory.from_memory(
                memory,
                quality_score=clamp_score(entry.score),
                category=category,
                tags=[category, LLM_TAG],
                distilled_text=entry.reasoning,
                scoring_method="llm",
                llm_reasoning=entry.reasoning,
            ))

        return scored
