# ==============================================
# FeedProbe: read-only feed checks
# ==============================================
#
# PURPOSE:
#   Replays the app's feed queries against the live collection and checks
#   that every review they return is canonical. Run it after a normalize
#   commit to confirm the feeds render.
#
# A REVIEW PASSES WHEN:
#   - createdAt is a timestamp
#   - isDeleted is False
#   - the feed's filter key matches (restaurant, user, following)
#
# CLASS: FeedProbe
# ----------------
#   - find_target(dish_names) -> dict | None
#   - probe_home(limit=20) -> ProbeResult
#   - probe_keyed(key, target, label, limit=10) -> ProbeResult
#   - probe_following(max_users=5, limit=20) -> ProbeResult
#   - run(dish_names=()) -> list[ProbeResult]
#
# NEVER WRITES.
#
# ==============================================

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

from pymongo import DESCENDING

from .errors import StoreError
from .normalization.review_record import is_timestamp


logger = logging.getLogger(__name__)


@dataclass
class ProbeResult:
    name: str
    passed: bool
    detail: str = "all OK"

    def line(self) -> str:
        return f"{self.name}: {'PASS' if self.passed else f'FAIL ({self.detail})'}"


def _first_violation(
    documents: List[dict],
    extra_check: Optional[Callable[[dict], Optional[str]]] = None
) -> Optional[str]:
    for doc in documents:
        if not is_timestamp(doc.get("createdAt")):
            return f"createdAt not timestamp for {doc['_id']}"
        if doc.get("isDeleted") is not False:
            return f"isDeleted not false for {doc['_id']}"
        if extra_check is not None:
            problem = extra_check(doc)
            if problem:
                return problem
    return None


class FeedProbe:
    """Home, restaurant, user and following feed probes."""

    def __init__(self, mongo_client, collection_name: str = "reviews"):
        self._mongo = mongo_client
        self._collection_name = collection_name

    def _feed(self, query: Dict[str, Any], limit: int) -> List[dict]:
        visible = {"isDeleted": False, "createdAt": {"$ne": None}}
        visible.update(query)
        return self._mongo.find(
            self._collection_name, visible, sort=[("createdAt", DESCENDING)], limit=limit
        )

    def find_target(self, dish_names: Sequence[str]) -> Optional[dict]:
        """First review matching any dish name on dishName or legacy dish."""
        for name in dish_names:
            for field_name in ("dishName", "dish"):
                documents = self._mongo.find(self._collection_name, {field_name: name}, limit=10)
                if documents:
                    return documents[0]
        return None

    def probe_home(self, limit: int = 20) -> ProbeResult:
        name = f"Home feed ({limit})"
        try:
            problem = _first_violation(self._feed({}, limit))
        except StoreError as e:
            return ProbeResult(name, False, str(e))
        return ProbeResult(name, problem is None, problem or "all OK")

    def probe_keyed(self, key: str, target: dict, label: str, limit: int = 10) -> ProbeResult:
        value = target.get(key)
        if not isinstance(value, str):
            return ProbeResult(f"{label} feed", False, f"target review missing {key}")

        name = f"{label} feed ({limit}) for {value}"

        def key_matches(doc: dict) -> Optional[str]:
            if doc.get(key) != value:
                return f"{key} mismatch for {doc['_id']}"
            return None

        try:
            problem = _first_violation(self._feed({key: value}, limit), key_matches)
        except StoreError as e:
            return ProbeResult(name, False, str(e))
        return ProbeResult(name, problem is None, problem or "all OK")

    def probe_following(self, max_users: int = 5, limit: int = 20) -> ProbeResult:
        try:
            latest = self._mongo.find(
                self._collection_name,
                {"createdAt": {"$ne": None}},
                sort=[("createdAt", DESCENDING)],
                limit=50
            )
            user_ids: List[str] = []
            for doc in latest:
                user_id = doc.get("userId")
                if isinstance(user_id, str) and user_id not in user_ids:
                    user_ids.append(user_id)
            user_ids = user_ids[:max_users]
            if not user_ids:
                return ProbeResult("Following feed", False, "no candidate userIds")

            name = f"Following feed ({len(user_ids)} users)"

            def in_probe_list(doc: dict) -> Optional[str]:
                if doc.get("userId") not in user_ids:
                    return f"userId not in probe list for {doc['_id']}"
                return None

            problem = _first_violation(self._feed({"userId": {"$in": user_ids}}, limit), in_probe_list)
        except StoreError as e:
            return ProbeResult("Following feed", False, str(e))
        return ProbeResult(name, problem is None, problem or "all OK")

    def run(self, dish_names: Sequence[str] = ()) -> List[ProbeResult]:
        """
        Run every probe.

        Args:
            dish_names: Dish names used to pick the review whose restaurant
                        and author feeds get probed

        Returns:
            One ProbeResult per probe that ran
        """
        results = []
        target = self.find_target(dish_names) if dish_names else None
        if target is None:
            logger.info("[probe] no target review found, skipping restaurant/user probes")

        results.append(self.probe_home())
        if target is not None:
            results.append(self.probe_keyed("restaurantId", target, "Restaurant"))
            results.append(self.probe_keyed("userId", target, "User"))
        results.append(self.probe_following())

        for result in results:
            logger.info("[probe] %s", result.line())
        return results
