"""
Scoring stage tests - batch LLM scorer, response parsing and fallback.
"""

import json
import math
import threading

import pytest

from distiller.core.schema import AgentMemory, DistillCancelled, NOISE
from distiller.scoring.llm_scorer import (
    FALLBACK_TAG,
    LLM_TAG,
    SCORING_PROMPT,
    LLMBatchScorer,
    LLMScoringError,
    clamp_score,
    format_batch,
    parse_scores,
    strip_code_fence,
)
from distiller.scoring.transports import LLMTransport


class FakeTransport(LLMTransport):
    """Returns canned replies in order; exceptions in the list are raised."""

    def __init__(self, replies):
        self.replies = list(replies)
        self.calls = []

    def complete(self, system_prompt, user_prompt):
        self.calls.append((system_prompt, user_prompt))
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


def make_memory(i, text=None, agent="trader"):
    return AgentMemory(
        id=f"m{i}",
        text=text or f"Memory number {i} about a clean win on the breakout.",
        source_agent=agent,
        namespace="ns1",
        timestamp=1700000000000 + i,
    )


def reply(*entries):
    return json.dumps(list(entries))


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def make_scorer(sleeps):
    def _make(replies, batch_size=10, delay=0.5):
        transport = FakeTransport(replies)
        scorer = LLMBatchScorer(transport, batch_size=batch_size, batch_delay_sec=delay, sleep=sleeps.append)
        return scorer, transport
    return _make


class TestParsing:
    """Reply parsing helpers."""

    def test_strip_json_code_fence(self):
        assert strip_code_fence('```json\n[{"index": 0}]\n```') == '[{"index": 0}]'

    def test_strip_plain_code_fence(self):
        assert strip_code_fence('Here you go:\n```\n[]\n```') == '[]'

    def test_unfenced_text_unchanged(self):
        assert strip_code_fence('[1, 2]') == '[1, 2]'

    def test_parse_scores_keyed_by_index(self):
        entries = parse_scores(reply(
            {"index": 1, "score": 70, "category": "market_insight", "reasoning": "ok"},
            {"index": 0, "score": "55", "category": "noise"},
        ))
        assert set(entries) == {0, 1}
        assert entries[0].score == 55
        assert entries[0].reasoning == "LLM scoring"
        assert entries[1].category == "market_insight"

    def test_parse_scores_drops_non_numeric(self):
        entries = parse_scores('[{"index": 0, "score": "abc"}, {"index": 1, "score": "inf"}, {"index": "x", "score": 3}]')
        assert entries == {}

    @pytest.mark.parametrize("literal", ["NaN", "Infinity", "-Infinity"])
    def test_parse_scores_rejects_non_json_constants(self, literal):
        raw = '[{"index": 0, "score": 80}, {"index": 1, "score": ' + literal + '}]'
        with pytest.raises(LLMScoringError, match="not valid JSON"):
            parse_scores(raw)

    def test_parse_scores_missing_category_defaults_to_noise(self):
        entries = parse_scores(reply({"index": 0, "score": 80}))
        assert entries[0].category == NOISE

    def test_parse_scores_rejects_malformed_json(self):
        with pytest.raises(LLMScoringError, match="not valid JSON"):
            parse_scores("[{index: 0")

    def test_parse_scores_rejects_non_array(self):
        with pytest.raises(LLMScoringError, match="not a JSON array"):
            parse_scores('{"index": 0, "score": 10}')

    def test_clamp_score(self):
        assert clamp_score(150) == 100
        assert clamp_score(-4) == 0
        assert clamp_score(72.6) == 73
        assert clamp_score(84.5) == 85
        assert clamp_score(0.5) == 1
        assert clamp_score(math.nan) == 50
        assert clamp_score(math.inf) == 50


class TestRequestFormat:
    """What is sent to the transport."""

    def test_user_payload_lines(self):
        long_text = "x" * 800
        payload = format_batch([make_memory(0), make_memory(1, text=long_text, agent="scrum")])

        assert payload.startswith("Memories to score:\n\n")
        assert "[0] agent=trader ns=ns1 | Memory number 0" in payload
        assert f"[1] agent=scrum ns=ns1 | {'x' * 500}" in payload
        assert "x" * 501 not in payload

    def test_system_prompt_carries_taxonomy_and_rubric(self, make_scorer):
        scorer, transport = make_scorer([reply()])
        scorer.score_batch([make_memory(0)])

        system_prompt, _ = transport.calls[0]
        assert system_prompt == SCORING_PROMPT
        assert "trading_win_pattern" in system_prompt and "noise" in system_prompt
        assert "90-100" in system_prompt and "0-29" in system_prompt


class TestScoring:
    """Successful LLM scoring and per-record matching."""

    def test_entries_applied_to_matching_records(self, make_scorer):
        scorer, _ = make_scorer([reply(
            {"index": 0, "score": 88, "category": "market_insight", "reasoning": "Actionable."},
            {"index": 1, "score": 150, "category": "bogus", "reasoning": "Odd."},
        )])

        first, second = scorer.score_batch([make_memory(0), make_memory(1)])

        assert first.quality_score == 88
        assert first.category == "market_insight"
        assert first.tags == ["market_insight", LLM_TAG]
        assert first.scoring_method == "llm"
        assert first.llm_reasoning == "Actionable."
        assert first.distilled_text == "Actionable."

        assert second.quality_score == 100
        assert second.category == NOISE
        assert second.tags == [NOISE, LLM_TAG]

    def test_fenced_reply_parsed(self, make_scorer):
        scorer, _ = make_scorer(["```json\n" + reply({"index": 0, "score": 64, "category": "market_insight"}) + "\n```"])
        [scored] = scorer.score_batch([make_memory(0)])
        assert scored.scoring_method == "llm"
        assert scored.quality_score == 64

    def test_missing_index_falls_back_for_that_record_only(self, make_scorer):
        scorer, _ = make_scorer([reply({"index": 0, "score": 90, "category": "trading_win_pattern"})])

        first, second = scorer.score_batch([make_memory(0), make_memory(1)])

        assert first.scoring_method == "llm"
        assert second.scoring_method == "rule"
        assert second.tags[-1] == FALLBACK_TAG
        assert "win" in second.tags


class TestFallback:
    """Chunk-level failures fall back to heuristic scoring."""

    @pytest.mark.parametrize("failure", [
        RuntimeError("LLM API error: 503 - unavailable"),
        "this is not json",
        '{"index": 0, "score": 50}',
        '[{"index": 0, "score": 80, "category": "market_insight"}, {"index": 1, "score": NaN}]',
    ])
    def test_whole_chunk_falls_back(self, make_scorer, failure):
        scorer, _ = make_scorer([failure])
        memories = [make_memory(i) for i in range(3)]

        scored = scorer.score_batch(memories)

        assert [s.id for s in scored] == ["m0", "m1", "m2"]
        for s in scored:
            assert s.scoring_method == "rule"
            assert s.tags[-1] == FALLBACK_TAG
            assert s.llm_reasoning is None

    def test_failure_isolated_to_its_chunk(self, make_scorer):
        scorer, _ = make_scorer([
            RuntimeError("boom"),
            reply({"index": 0, "score": 77, "category": "market_insight"},
                  {"index": 1, "score": 66, "category": "market_insight"}),
        ], batch_size=2)

        scored = scorer.score_batch([make_memory(i) for i in range(4)])

        assert [s.scoring_method for s in scored] == ["rule", "rule", "llm", "llm"]
        assert [s.quality_score for s in scored[2:]] == [77, 66]


class TestPacing:
    """Chunking, inter-chunk delay, progress and cancellation."""

    def test_chunks_and_delays(self, make_scorer, sleeps):
        scorer, transport = make_scorer([reply()] * 3, batch_size=2, delay=0.5)
        memories = [make_memory(i) for i in range(5)]
        progress = []

        scored = scorer.score_batch(memories, progress=lambda done, total: progress.append((done, total)))

        assert len(scored) == 5
        assert len(transport.calls) == 3
        assert sleeps == [0.5, 0.5]
        assert progress == [(2, 5), (4, 5), (5, 5)]
        assert "[0]" in transport.calls[2][1] and "[1]" not in transport.calls[2][1]

    def test_no_delay_after_single_chunk(self, make_scorer, sleeps):
        scorer, _ = make_scorer([reply()], batch_size=10)
        scorer.score_batch([make_memory(0)])
        assert sleeps == []

    def test_empty_input_makes_no_calls(self, make_scorer):
        scorer, transport = make_scorer([])
        assert scorer.score_batch([]) == []
        assert transport.calls == []

    def test_batch_size_clamped_to_one(self, make_scorer):
        scorer, _ = make_scorer([], batch_size=0)
        assert scorer.batch_size == 1

    def test_cancel_signal_shared_with_engine(self):
        from distiller.core.distiller import DistillCancelled as EngineCancelled
        assert EngineCancelled is DistillCancelled

    def test_cancelled_before_next_chunk(self, make_scorer):
        cancel = threading.Event()
        scorer, transport = make_scorer([reply()] * 3, batch_size=1, delay=0)
        progress = lambda done, total: cancel.set()

        with pytest.raises(DistillCancelled):
            scorer.score_batch([make_memory(i) for i in range(3)], progress=progress, cancel_event=cancel)

        assert len(transport.calls) == 1
