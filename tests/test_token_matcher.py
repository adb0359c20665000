from engine.token_matcher import (
    TokenMatcher,
    TokenMatchOptions,
    TokenMatchResult,
    score_tokens,
    select_match,
)
from engine.types import SceneMetadata


def _result(scene_id, score, overlap=1.0):
    return TokenMatchResult(
        scene_id=scene_id,
        scene_title=scene_id.upper(),
        score=score,
        breakdown={"overlap": overlap},
    )


def test_score_is_bounded_and_zero_for_empty_token_sets() -> None:
    samples = [
        (["jane", "doe", "pool"], ["jane", "doe", "pool"]),
        (["jane", "doe"], ["kitchen", "counter", "fun", "times"]),
        (["alpha"], ["alpha", "alpha", "alpha"]),
    ]
    for query, candidate in samples:
        score, breakdown = score_tokens(
            query,
            candidate,
            query_date="2024-01-01",
            candidate_date="2024-01-01",
            query_studio="Studio",
            candidate_studio="studio",
        )
        assert 0.0 <= score <= 1.0
        assert set(breakdown) == {"overlap", "sequence", "length", "date", "studio"}

    assert score_tokens([], ["jane"])[0] == 0.0
    assert score_tokens(["jane"], [])[0] == 0.0


def test_gap_rule_rejects_near_tie() -> None:
    # 0.9 / 0.61 is below the 1.5 ratio required when second-best is above the floor.
    assert select_match([_result("a", 0.9), _result("b", 0.61)]) is None


def test_gap_rule_ignores_second_best_under_floor() -> None:
    best = select_match([_result("a", 0.9), _result("b", 0.29)])
    assert best is not None
    assert best.scene_id == "a"


def test_gap_floor_is_tunable() -> None:
    options = TokenMatchOptions(gap_floor=0.7)
    best = select_match([_result("a", 0.9), _result("b", 0.61)], options)
    assert best is not None
    assert best.scene_id == "a"


def test_rejects_below_threshold_and_low_overlap() -> None:
    assert select_match([_result("a", 0.65)]) is None
    assert select_match([_result("a", 0.8, overlap=0.05)]) is None


def test_rejects_queries_with_too_few_tokens() -> None:
    scenes = [SceneMetadata(id="s1", title="Hot Tub")]
    assert TokenMatcher().find_best_match("hot", scenes) is None


def test_find_best_match_picks_reordered_title() -> None:
    scenes = [
        SceneMetadata(id="s1", title="Poolside Afternoon with Jane Doe"),
        SceneMetadata(id="s2", title="Kitchen Counter"),
    ]
    best = TokenMatcher().find_best_match("jane doe poolside afternoon", scenes)
    assert best is not None
    assert best.scene_id == "s1"
    assert best.breakdown["overlap"] == 1.0
