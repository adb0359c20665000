import threading

import pytest

from engine.errors import ModelLoadError
from engine.learned_scorer import (
    LearnedScorer,
    ScoringCandidate,
    ScoringQuery,
    classify_match,
    performer_penalty,
    sigmoid,
)


class _FakeModel:
    def __init__(self, logit=2.0, error=None):
        self.logit = logit
        self.error = error
        self.batches = []

    def predict(self, pairs):
        self.batches.append(len(pairs))
        if self.error is not None:
            raise self.error
        return [self.logit for _ in pairs]


def test_concurrent_loads_share_one_model_load() -> None:
    started = threading.Event()
    release = threading.Event()
    calls = []

    def _slow_factory(model_name):
        calls.append(model_name)
        started.set()
        release.wait(timeout=5)
        return _FakeModel()

    scorer = LearnedScorer(_slow_factory)
    results = []
    threads = [threading.Thread(target=lambda: results.append(scorer.load())) for _ in range(5)]
    threads[0].start()
    assert started.wait(timeout=5)
    for thread in threads[1:]:
        thread.start()
    release.set()
    for thread in threads:
        thread.join(timeout=5)

    assert len(calls) == 1
    assert results == [True] * 5
    assert scorer.state == "ready"


def test_load_failure_is_remembered_until_reset() -> None:
    calls = []

    def _broken_factory(model_name):
        calls.append(model_name)
        raise OSError("no weights")

    scorer = LearnedScorer(_broken_factory)
    assert scorer.load() is False
    assert scorer.load() is False
    assert len(calls) == 1
    assert scorer.is_available is False
    with pytest.raises(ModelLoadError):
        scorer.similarity("a", "b")

    scorer.reset()
    assert scorer.load() is False
    assert len(calls) == 2


def test_session_unloads_model_after_use() -> None:
    scorer = LearnedScorer(lambda name: _FakeModel())
    with scorer.session():
        assert scorer.state == "ready"
        assert scorer.similarity("a", "b") == pytest.approx(sigmoid(2.0))
    assert scorer.state == "unloaded"


def test_inference_failure_degrades_until_cleared() -> None:
    model = _FakeModel(error=RuntimeError("cuda oom"))
    scorer = LearnedScorer(lambda name: model)
    with scorer.session():
        with pytest.raises(RuntimeError):
            scorer.similarity("a", "b")
    assert scorer.is_available is False
    with pytest.raises(ModelLoadError):
        scorer.similarity("a", "b")
    assert model.batches == [1]

    scorer.clear_degraded()
    assert scorer.is_available is True


def test_batch_matching_is_chunked_by_batch_size() -> None:
    model = _FakeModel()
    scorer = LearnedScorer(lambda name: model, batch_size=4)
    queries = [ScoringQuery(title=f"title {i}") for i in range(3)]
    candidates = [ScoringCandidate(id="a", title="title a"), ScoringCandidate(id="b", title="title b")]

    matches = scorer.find_best_match_batch(queries, candidates, threshold=0.5)

    assert model.batches == [4, 2]
    assert len(matches) == 3
    assert all(match is not None and match.index == 0 for match in matches)


def test_performer_mismatch_penalizes_candidate() -> None:
    scorer = LearnedScorer(lambda name: _FakeModel())
    query = ScoringQuery(title="Pool Day", performer="Jane Doe")
    candidates = [
        ScoringCandidate(id="other", title="Pool Day", performers=("Someone Else",)),
        ScoringCandidate(id="same", title="Pool Day", performers=("Jane Doe",)),
    ]

    match = scorer.find_best_match(query, candidates, threshold=0.5)

    assert match is not None
    assert match.candidate.id == "same"
    assert performer_penalty("Jane Doe", ["Someone Else"]) == pytest.approx(0.95)
    assert performer_penalty("Jane Doe", ["Jane Doe"]) == 0.0


def test_classify_match_bands() -> None:
    assert classify_match(0.9) == "matched"
    assert classify_match(0.5) == "uncertain"
    assert classify_match(0.1) == "unknown"


def test_single_and_batch_scoring_apply_the_same_penalty() -> None:
    scorer = LearnedScorer(lambda name: _FakeModel())
    query = ScoringQuery(title="Pool Day", performer="Jane Doe")
    candidate = ScoringCandidate(id="s1", title="Xyzzy Quux Plugh Zork", performers=("Jane Doe",))

    single = scorer.score(query, candidate)
    batch = scorer.score_batch([query], [candidate])[0][0]

    assert single == pytest.approx(batch)
    assert single < sigmoid(2.0)
