"""
Scoring stage only. Do not implement beyond this file's responsibilities.
Rule-based heuristic scorer - deterministic quality score, category and tags.
"""

from typing import Callable, List, Optional, Sequence

from distiller.core.schema import AgentMemory, NOISE, ScoredMemory


BASELINE_SCORE = 50
NOISE_FLOOR = 30

# (tag, delta, keywords); a group contributes once no matter how many keywords hit
KEYWORD_GROUPS = (
    ("win", 15, ("win", "thắng", "lợi nhuận")),
    ("pattern", 10, ("pattern", "mẫu")),
    ("fix", 10, ("fix", "resolved", "đã sửa")),
    ("rule", 10, ("rule", "quy tắc", "luật")),
    ("technical", 5, ("rsi", "macd", "sma")),
    ("architecture", 10, ("architecture", "design")),
    ("lesson", 15, ("lesson", "bài học", "kinh nghiệm")),
)

LOSS_TERMS = ("thua", "loss", "stop loss")
MARKET_TERMS = ("market", "thị trường")


def _contains_any(text: str, terms: Sequence[str]) -> bool:
    return any(term in text for term in terms)


def _raw_score(text: str, tags: List[str]) -> int:
    score = BASELINE_SCORE

    for tag, delta, keywords in KEYWORD_GROUPS:
        if _contains_any(text, keywords):
            score += delta
            tags.append(tag)

    if len(text) > 200:
        score += 5
    if len(text) > 500:
        score += 5

    if "error" in text and "500" in text:
        score -= 10
    if len(text) < 30:
        score -= 20
    if "skipping" in text or "no output" in text:
        score -= 15
    if "test" in text and "backtest" not in text:
        score -= 10

    return score


def _agent_category(agent: str, text: str, tags: List[str], score: int) -> str:
    """Category from the originating agent and collected tags."""
    if agent == "trader":
        if "win" in tags:
            return "trading_win_pattern"
        if _contains_any(text, LOSS_TERMS):
            return "trading_loss_lesson"
        if "technical" in tags or _contains_any(text, MARKET_TERMS):
            return "market_insight"
        if score > 50:
            return "market_insight"
    elif agent == "fullstack":
        if "fix" in tags:
            return "bug_fix_pattern"
        if "architecture" in tags:
            return "architecture_decision"
        if score > 50:
            return "code_pattern"
    elif agent == "scrum":
        if score > 50:
            return "process_improvement"
    elif agent == "assistant":
        if "rule" in tags:
            return "system_rule"
        if score > 55:
            return "project_context"
    return NOISE


def score_memory(memory: AgentMemory) -> ScoredMemory:
    """
    Score a memory with keyword and length rules.

    Agent/tag rules pick the category first; a "rule" tag then forces
    system_rule and a score under the noise floor forces noise, in that order.
    """
    text = (memory.text or "").lower()
    tags: List[str] = []

    score = _raw_score(text, tags)
    category = _agent_category(memory.source_agent, text, tags, score)

    if "rule" in tags:
        category = "system_rule"
    if score < NOISE_FLOOR:
        category = NOISE

    return ScoredMemory.from_memory(
        memory,
        quality_score=min(100, max(0, score)),
        category=category,
        tags=tags,
        scoring_method="rule",
    )


class RuleScorer:
    """Heuristic scorer applied independently to each memory."""

    method = "rule"

    def score(self, memory: AgentMemory) -> ScoredMemory:
        return score_memory(memory)

    def score_batch(self, memories: Sequence[AgentMemory],
                    progress: Optional[Callable[[int, int], None]] = None,
                    cancel_event=None) -> List[ScoredMemory]:
        scored = [score_memory(m) for m in memories]
        if progress:
            progress(len(scored), len(scored))
        return scored
