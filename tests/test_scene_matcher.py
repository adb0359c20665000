from engine.scene_matcher import MatchSettings, SceneMatcher
from engine.title_normalization import normalize
from engine.types import SceneMetadata


class _FakeScorer:
    def __init__(self, similarity=0.9, error=None):
        self._similarity = similarity
        self._error = error
        self.calls = 0

    @property
    def is_available(self):
        return True

    def similarity(self, first, second):
        self.calls += 1
        if self._error is not None:
            raise self._error
        return self._similarity


def test_exact_normalized_titles_score_100() -> None:
    matcher = SceneMatcher()
    result = matcher.match_titles(normalize("scene title 2024"), normalize("Scene Title 2024"))
    assert result == (100.0, "exact", 1.0)


def test_exact_match_stops_scoring_remaining_scenes() -> None:
    def _scenes():
        yield SceneMetadata(id="s1", title="Scene Title")
        raise AssertionError("scenes after an exact match must not be scored")

    match = SceneMatcher().find_best_match("Scene Title 2024", _scenes())

    assert match is not None
    assert match.scene_id == "s1"
    assert match.score == 100.0
    assert match.method == "exact"


def test_accept_decision_does_not_depend_on_argument_order() -> None:
    matcher = SceneMatcher()
    pairs = [
        ("jane doe hot tub fun", "jane doe hot tub"),
        (
            "a very long scene title for testing",
            "a very long scene title for testing purposes only extended",
        ),
        ("sunny day at the beach", "sunny day at the beech"),
        ("sunny day", "rainy night"),
    ]
    for first, second in pairs:
        forward = matcher.match_titles(first, second)
        backward = matcher.match_titles(second, first)
        assert (forward is None) == (backward is None), (first, second)


def test_levenshtein_accepts_near_identical_titles() -> None:
    score, method, confidence = SceneMatcher().match_titles("sunny day at the beach", "sunny day at the beech")
    assert method == "levenshtein"
    assert 0.9 < confidence < 1.0
    assert score == confidence * 100.0


def test_date_bonus_is_added_to_the_score() -> None:
    scenes = [SceneMetadata(id="a", title="Sunny Day", date="2024-03-15")]
    match = SceneMatcher().find_best_match("Sunny Day 2024.03.15", scenes)
    assert match is not None
    assert match.method == "exact"
    assert match.score == 105.0


def test_learned_similarity_used_when_enabled() -> None:
    scorer = _FakeScorer(similarity=0.9)
    matcher = SceneMatcher(scorer)
    result = matcher.match_titles("summer heat", "hot summer days", MatchSettings(learned_enabled=True))
    assert result is not None
    assert result[1] == "learned"
    assert scorer.calls == 1


def test_learned_failure_falls_back_to_levenshtein() -> None:
    scorer = _FakeScorer(error=RuntimeError("inference failed"))
    matcher = SceneMatcher(scorer)
    settings = MatchSettings(learned_enabled=True)
    assert matcher.match_titles("summer heat", "hot summer days", settings) is None
    result = matcher.match_titles("sunny day at the beach", "sunny day at the beech", settings)
    assert result is not None
    assert result[1] == "levenshtein"
