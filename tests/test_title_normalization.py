from engine.title_normalization import (
    extract_core_title,
    levenshtein_similarity,
    normalize,
    remove_metadata,
    tokenize,
)


def test_normalize_is_idempotent() -> None:
    titles = [
        "Jane Doe - Sunny Day (2024) [1080p]",
        "  Multiple   Spaces\tand_underscores ",
        "Ünïcode Títle!!",
        "",
    ]
    for title in titles:
        once = normalize(title)
        assert normalize(once) == once


def test_normalize_lowercases_and_collapses_punctuation() -> None:
    assert normalize("Jane.Doe--Sunny,Day!") == "jane doe sunny day"
    assert normalize(None) == ""


def test_remove_metadata_strips_release_noise() -> None:
    title = "Jane Doe - Sunny Day 2024.05.01 1080p WEB-DL x264 [XC]"
    assert remove_metadata(title) == "jane doe sunny day"


def test_extract_core_title_falls_back_to_raw_title() -> None:
    assert extract_core_title("1080p") == "1080p"


def test_tokenize_drops_stop_words_short_and_numeric_tokens() -> None:
    assert tokenize("The Big Scene 2024 at Home") == ["big", "home"]


def test_levenshtein_similarity_bounds() -> None:
    assert levenshtein_similarity("", "") == 1.0
    assert levenshtein_similarity("abc", "xyz") == 0.0
    assert abs(levenshtein_similarity("abc", "abd") - 2 / 3) < 1e-9
