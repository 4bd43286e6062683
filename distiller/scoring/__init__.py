"""
Scoring stage only. Do not implement beyond this file's responsibilities.
Rule-based and LLM-backed scorers, chosen once per run.
"""

from .heuristic import RuleScorer, score_memory
from .llm_scorer import LLMBatchScorer, LLMScoringError, SCORING_PROMPT
from .transports import LLMTransport, OllamaTransport, OpenAICompatibleTransport


def select_scorer(settings, force_rule_only: bool = False, transport: LLMTransport = None):
    """
    Pick the scorer for a whole run.

    LLM scoring is used only when enabled in settings and not forced off;
    otherwise every memory is scored by the heuristic rules.
    """
    if force_rule_only or not settings.llm_scoring_enabled:
        return RuleScorer()

    if transport is None:
        from distiller.core.config import get_llm_transport
        transport = get_llm_transport(settings)

    return LLMBatchScorer(
        transport,
        batch_size=settings.llm_batch_size,
        batch_delay_sec=settings.llm_batch_delay_sec,
    )


__all__ = [
    'RuleScorer',
    'score_memory',
    'LLMBatchScorer',
    'LLMScoringError',
    'SCORING_PROMPT',
    'LLMTransport',
    'OllamaTransport',
    'OpenAICompatibleTransport',
    'select_scorer',
]
