from datetime import datetime, timedelta, timezone

from db import QualityProfileStore, QueueStore, SceneStore, SubscriptionStore
from engine.types import QualityRule, SceneMetadata


def _db(tmp_path):
    return str(tmp_path / "scenarr.sqlite")


def test_scene_upsert_keeps_has_files_flag(tmp_path) -> None:
    store = SceneStore(_db(tmp_path))
    store.upsert(SceneMetadata(id="s1", title="Pool Day", performers=("Jane Doe",), studio="Studio X"))
    store.mark_has_files("s1")

    store.upsert(SceneMetadata(id="s1", title="Pool Day (Remastered)", performers=("Jane Doe",)))

    scene = store.get("s1")
    assert scene.title == "Pool Day (Remastered)"
    assert store.has_files("s1") is True


def test_scene_listing_by_performer_and_studio(tmp_path) -> None:
    store = SceneStore(_db(tmp_path))
    store.upsert_many(
        [
            SceneMetadata(id="s1", title="A", date="2024-01-01", performers=("Jane Doe",), studio="Studio X"),
            SceneMetadata(id="s2", title="B", date="2024-02-01", performers=("Jane Doefield",), studio="Studio Y"),
            SceneMetadata(id="s3", title="C", date="2024-03-01", performers=("Jane Doe", "Ann Roe")),
        ]
    )
    store.create_placeholder("Loose Release", performers=("Jane Doe",))

    assert [s.id for s in store.list_for_entity("performer", "jane doe")] == ["s3", "s1"]
    assert [s.id for s in store.list_for_entity("studio", "STUDIO X")] == ["s1"]


def test_placeholder_lookup_by_title(tmp_path) -> None:
    store = SceneStore(_db(tmp_path))
    created = store.create_placeholder("Loose Release", studio="Studio X")
    assert created.id.startswith("placeholder-")
    assert store.find_placeholder_by_title("loose release").id == created.id


def test_subscription_coverage(tmp_path) -> None:
    subs = SubscriptionStore(_db(tmp_path))
    subs.subscribe("performer", "p1", entity_name="Jane Doe")
    subs.subscribe("studio", "st1", entity_name="Studio X")
    subs.subscribe("scene", "s9")

    assert subs.covers_scene(SceneMetadata(id="s1", title="A", performers=("jane doe",))) is True
    assert subs.covers_scene(SceneMetadata(id="s2", title="B", studio="studio x")) is True
    assert subs.covers_scene(SceneMetadata(id="s9", title="C")) is True
    assert subs.covers_scene(SceneMetadata(id="s3", title="D", performers=("Ann Roe",))) is False

    subs.unsubscribe("performer", "p1")
    assert subs.covers_scene(SceneMetadata(id="s1", title="A", performers=("jane doe",))) is False


def test_subscribe_is_an_upsert(tmp_path) -> None:
    subs = SubscriptionStore(_db(tmp_path))
    first = subs.subscribe("performer", "p1", entity_name="Jane Doe")
    second = subs.subscribe("performer", "p1", aliases=["JD"], quality_profile_id="q1")
    assert first.id == second.id
    assert second.entity_name == "Jane Doe"
    assert second.aliases == ("JD",)
    assert len(subs.list_active("performer")) == 1


def test_quality_profile_resolution(tmp_path) -> None:
    store = QualityProfileStore(_db(tmp_path))
    assert store.resolve(None) is None

    store.save("SD", [QualityRule(quality="480p")], profile_id="sd")
    store.save(
        "HD",
        [QualityRule(quality="1080p", source="WEB-DL", min_seeders=5), QualityRule(quality="720p")],
        profile_id="hd",
        is_default=True,
    )

    assert store.resolve("sd").name == "SD"
    hd = store.resolve("missing")
    assert hd.name == "HD"
    assert hd.rules[0] == QualityRule(quality="1080p", source="WEB-DL", min_seeders=5)


def test_queue_transitions_are_guarded(tmp_path) -> None:
    queue = QueueStore(_db(tmp_path))
    item = queue.create(scene_id="s1", title="Pool Day", status="queued", torrent_hash="ABCDEF")

    assert item.torrent_hash == "abcdef"
    assert queue.mark_downloading(item.id, client_hash="ABCDEF") is True
    assert queue.mark_paused(item.id) is True
    assert queue.mark_downloading(item.id) is True
    assert queue.mark_completed(item.id) is True
    assert queue.get(item.id).completed_at is not None

    # Terminal items never move again.
    assert queue.mark_downloading(item.id) is False
    assert queue.mark_failed(item.id) is False
    assert queue.get(item.id).status == "completed"


def test_add_attempts_only_grow(tmp_path) -> None:
    queue = QueueStore(_db(tmp_path))
    item = queue.create(scene_id="s1", title="Pool Day", status="queued", torrent_hash="abc")

    assert queue.record_add_attempt(item.id, error="timeout") == "add_failed"
    assert queue.record_add_attempt(item.id, error="timeout") == "add_failed"
    assert queue.record_add_attempt(item.id, client_hash="abc") == "downloading"

    stored = queue.get(item.id)
    assert stored.add_attempts == 3
    assert stored.add_error is None
    assert stored.status == "downloading"


def test_active_lookup_by_scene_and_hash(tmp_path) -> None:
    queue = QueueStore(_db(tmp_path))
    item = queue.create(scene_id="s1", title="Pool Day", status="queued", torrent_hash="abc")
    queue.record_add_attempt(item.id, client_hash="def")

    assert queue.find_active_by_scene("s1").id == item.id
    assert queue.find_active_by_hash("DEF").id == item.id
    assert queue.find_active_by_hash("abc").id == item.id
    assert queue.find_active_by_hash("zzz") is None


def test_list_add_failed_respects_age(tmp_path) -> None:
    queue = QueueStore(_db(tmp_path))
    item = queue.create(scene_id="s1", title="Pool Day", status="queued", torrent_hash="abc")
    queue.record_add_attempt(item.id, error="rejected")

    assert queue.list_add_failed(older_than_minutes=5) == []
    later = datetime.now(timezone.utc) + timedelta(minutes=10)
    assert [i.id for i in queue.list_add_failed(older_than_minutes=5, now=later)] == [item.id]
