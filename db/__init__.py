"""SQLite persistence for Scenarr."""

from db.quality_profiles import QualityProfileStore
from db.queue import QueueStore
from db.scenes import SceneStore
from db.subscriptions import Subscription, SubscriptionStore

__all__ = ["QualityProfileStore", "QueueStore", "SceneStore", "Subscription", "SubscriptionStore"]
