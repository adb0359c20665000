from engine.config import DEFAULT_CONFIG, merge_defaults, search_settings_from_config, validate_config


def test_empty_config_is_valid() -> None:
    assert validate_config({}) == []
    assert validate_config(merge_defaults({})) == []


def test_non_object_config_is_rejected() -> None:
    assert validate_config([]) == ["config must be a JSON object"]


def test_validation_collects_every_error() -> None:
    errors = validate_config(
        {
            "prowlarr": {"url": "http://prowlarr:9696"},
            "qbittorrent": {"url": "qbit:8080"},
            "metadata_provider": "imdb",
            "matching": {"method": "fuzzy", "match_threshold": 1.5, "learned_batch_size": 0},
            "download": {"max_per_run": "ten"},
            "jobs": "hourly",
        }
    )

    assert "prowlarr.api_key is required when prowlarr.url is set" in errors
    assert "qbittorrent.url must be an http(s) URL" in errors
    assert "metadata_provider must be 'tpdb' or 'stashdb'" in errors
    assert "matching.method must be one of staged, token, learned" in errors
    assert "matching.match_threshold must be <= 1" in errors
    assert "matching.learned_batch_size must be >= 1" in errors
    assert "download.max_per_run must be an integer" in errors
    assert "jobs must be an object" in errors


def test_speed_profile_rules_are_checked() -> None:
    errors = validate_config(
        {
            "speed_profiles": {
                "rules": [
                    {"start_hour": 22, "end_hour": 24},
                    {"start_hour": 8, "end_hour": 22, "days_of_week": [1, 7]},
                    "nope",
                ]
            }
        }
    )

    assert errors == [
        "speed_profiles.rules[0].end_hour must be an hour 0-23",
        "speed_profiles.rules[1].days_of_week must list days 0-6",
        "speed_profiles.rules[2] must be an object",
    ]


def test_booleans_are_not_numbers() -> None:
    assert validate_config({"search": {"min_indexers": True}}) == ["search.min_indexers must be an integer"]


def test_merge_defaults_fills_nested_sections() -> None:
    merged = merge_defaults({"matching": {"method": "token"}, "extra": 1})

    assert merged["matching"]["method"] == "token"
    assert merged["matching"]["match_threshold"] == DEFAULT_CONFIG["matching"]["match_threshold"]
    assert merged["download"] == DEFAULT_CONFIG["download"]
    assert merged["extra"] == 1

    merged["download"]["max_per_run"] = 1
    assert DEFAULT_CONFIG["download"]["max_per_run"] != 1


def test_search_settings_from_config() -> None:
    settings = search_settings_from_config(
        merge_defaults({"matching": {"method": "learned", "learned_threshold": 0.8}, "search": {"min_indexers": 3}})
    )

    assert settings.match_method == "learned"
    assert settings.learned_threshold == 0.8
    assert settings.min_indexers == 3
    assert settings.fallback_to_best is False
