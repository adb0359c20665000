from engine.search_filters import (
    dedupe_releases,
    detect_quality,
    detect_source,
    filter_by_name,
    filter_by_studio,
    group_by_scene,
)
from engine.types import CandidateRelease


def test_dedupe_merges_indexers_and_keeps_better_seeded_counts() -> None:
    releases = [
        CandidateRelease(title="Scene A", info_hash="ABC", indexer="one", seeders=3),
        CandidateRelease(title="Scene A", info_hash="abc", indexer="two", seeders=7, download_url="http://b"),
        CandidateRelease(title="Scene B", indexer="one", size=10),
        CandidateRelease(title="Scene B", indexer="two", size=10),
    ]

    merged = dedupe_releases(releases)

    assert len(merged) == 2
    first = merged[0]
    assert first.indexers == ("one", "two")
    assert first.seeders == 7
    assert first.download_url == "http://b"


def test_name_filter_requires_words_in_order() -> None:
    releases = [
        CandidateRelease(title="Jade Kush - Pool Day 1080p"),
        CandidateRelease(title="Jade Harper - Pool Day 1080p"),
        CandidateRelease(title="Jade and Friends Kush Party"),
    ]
    kept = filter_by_name(releases, "Jade Kush")
    assert [r.title for r in kept] == [
        "Jade Kush - Pool Day 1080p",
        "Jade and Friends Kush Party",
    ]


def test_name_filter_accepts_aliases() -> None:
    releases = [CandidateRelease(title="JD Star - Pool Day")]
    assert filter_by_name(releases, "Jane Doe") == []
    assert len(filter_by_name(releases, "Jane Doe", ["JD Star"])) == 1


def test_studio_filter_ignores_spacing_and_punctuation() -> None:
    releases = [
        CandidateRelease(title="BrazzersExxtra.24.01.01.Some.Title.1080p"),
        CandidateRelease(title="Brazzers.24.01.01.Other.Title.1080p"),
    ]
    kept = filter_by_studio(releases, "Brazzers Exxtra")
    assert [r.title for r in kept] == ["BrazzersExxtra.24.01.01.Some.Title.1080p"]


def test_group_by_scene_clusters_quality_variants() -> None:
    releases = [
        CandidateRelease(title="Jane Doe Poolside Afternoon 1080p"),
        CandidateRelease(title="Jane Doe Poolside Afternoon 720p WEBRip"),
        CandidateRelease(title="Kitchen Counter Fun Times 1080p"),
    ]
    groups = group_by_scene(releases)
    sizes = sorted(len(group.releases) for group in groups)
    assert sizes == [1, 2]


def test_quality_and_source_detection() -> None:
    assert detect_quality("Scene 4K HEVC") == "2160p"
    assert detect_quality("Scene 720p") == "720p"
    assert detect_quality("Scene") == "Unknown"
    assert detect_source("Scene WEB-DL") == "WEB-DL"
    assert detect_source("Scene webrip") == "WEBRip"
