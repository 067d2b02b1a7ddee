# services/likelihood.py - Composite log-likelihood of the check-in model
import math
from concurrent.futures import Executor
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

from venuecomp.domain.models import FactorView, Parameters
from venuecomp.services.link import LinkFunction
from venuecomp.services.numeric import NumericGuard
from venuecomp.services.store import EntityStore

AREA_PAIRS = ("observed", "all")


@dataclass
class LikelihoodTerms:
    area: float = 0.0
    competition: float = 0.0
    user_regularization: float = 0.0
    venue_regularization: float = 0.0
    friendship: float = 0.0

    @property
    def total(self) -> float:
        return (self.area + self.competition
                - self.user_regularization - self.venue_regularization - self.friendship)

    def __add__(self, other: "LikelihoodTerms") -> "LikelihoodTerms":
        return LikelihoodTerms(
            area=self.area + other.area,
            competition=self.competition + other.competition,
            user_regularization=self.user_regularization + other.user_regularization,
            venue_regularization=self.venue_regularization + other.venue_regularization,
            friendship=self.friendship + other.friendship,
        )


def split_evenly(items: Sequence, parts: int) -> List[Sequence]:
    """Contiguous, non-empty slices of roughly equal size"""
    parts = max(1, min(parts, len(items)))
    size, extra = divmod(len(items), parts)
    chunks, start = [], 0
    for p in range(parts):
        end = start + size + (1 if p < extra else 0)
        chunks.append(items[start:end])
        start = end
    return chunks


class LikelihoodEngine:
    """
    Sums, over users and the venues they checked in at:
      1. w * log<u, area sum>                    (choice of area)
      2. w * sum_n log link(<u, v> - <u, n>)     (venue beats its neighbors)
    and subtracts the factor and friendship regularizers.
    """

    def __init__(self, store: EntityStore, link: LinkFunction, params: Parameters,
                 use_friendship: bool = False, area_pairs: str = "observed",
                 guard: Optional[NumericGuard] = None, executor: Optional[Executor] = None,
                 num_workers: int = 4):
        if area_pairs not in AREA_PAIRS:
            raise ValueError(f"area_pairs must be one of {AREA_PAIRS}, got {area_pairs!r}")
        self.store = store
        self.link = link
        self.params = params
        self.use_friendship = use_friendship
        self.area_pairs = area_pairs
        self.guard = guard or NumericGuard()
        self.executor = executor
        self.num_workers = num_workers

    def compute(self, view: Optional[FactorView] = None, parallel: bool = False) -> float:
        return self.compute_terms(view, parallel).total

    def compute_terms(self, view: Optional[FactorView] = None, parallel: bool = False) -> LikelihoodTerms:
        view = view or self.store.snapshot()
        user_ids = self.store.user_ids
        venue_ids = self.store.venue_ids

        if not parallel or self.executor is None:
            terms = self._user_terms(view, user_ids) + self._venue_terms(view, venue_ids)
        else:
            user_parts = self.executor.map(lambda ids: self._user_terms(view, ids),
                                           split_evenly(user_ids, self.num_workers))
            venue_parts = self.executor.map(lambda ids: self._venue_terms(view, ids),
                                            split_evenly(venue_ids, self.num_workers))
            terms = LikelihoodTerms()
            for part in list(user_parts) + list(venue_parts):
                terms = terms + part

        if self.use_friendship and self.store.num_friend_pairs > 0:
            terms.friendship = self.params.lambda_f * terms.friendship / self.store.num_friend_pairs
        else:
            terms.friendship = 0.0
        return terms

    def compute_parallel(self, view: Optional[FactorView] = None) -> float:
        return self.compute(view, parallel=True)

    def compute_pair(self, user_id: str, venue_id: str, view: Optional[FactorView] = None) -> float:
        """Contribution of one (user, venue) pair, weighted by its own check-in count"""
        view = view or self.store.live_view()
        u = view.user(user_id)
        v = view.venue(venue_id)
        w = self.store.users[user_id].checkins_at(venue_id)

        area_term, competition = self._pair_terms(view, user_id, venue_id)
        result = w * (area_term + competition)
        result -= self.params.lambda_u * float(u @ u) + self.params.lambda_v * float(v @ v)

        if self.use_friendship:
            friends = self.store.friends_of[user_id]
            if friends:
                spread = sum(_sqr_dist(u, view.user(f)) for f in friends)
                result -= self.params.lambda_f * spread / len(friends)
        return result

    def score(self, user_id: str, venue_id: str, view: Optional[FactorView] = None) -> float:
        """Unweighted preference of a user for a venue, for ranking"""
        view = view or self.store.snapshot()
        area_term, competition = self._pair_terms(view, user_id, venue_id)
        return area_term + competition

    def _pair_terms(self, view: FactorView, user_id: str, venue_id: str) -> Tuple[float, float]:
        u = view.user(user_id)
        area_id = self.store.venues[venue_id].area_id
        area_term = self._log_inner(float(u @ view.area_sum(area_id)), user_id, area_id)
        competition = self._competition(view, u, venue_id, user_id)
        return area_term, competition

    def _user_terms(self, view: FactorView, user_ids: Sequence[str]) -> LikelihoodTerms:
        terms = LikelihoodTerms()
        for user_id in user_ids:
            user = self.store.users[user_id]
            u = view.user(user_id)

            # 1. Choice of area
            if self.area_pairs == "all":
                for area_id, area in self.store.areas.items():
                    w = sum(user.checkins_at(v) for v in area.venue_ids)
                    if w == 0:
                        continue
                    terms.area += w * self._log_inner(float(u @ view.area_sum(area_id)), user_id, area_id)
            else:
                for venue_id in user.venue_ids:
                    area_id = self.store.venues[venue_id].area_id
                    w = user.checkins[venue_id]
                    terms.area += w * self._log_inner(float(u @ view.area_sum(area_id)), user_id, area_id)

            # 2. Competition with neighbors
            for venue_id in user.venue_ids:
                terms.competition += user.checkins[venue_id] * self._competition(view, u, venue_id, user_id)

            # 3. Regularization
            terms.user_regularization += self.params.lambda_u * float(u @ u)

            # 4. Friendship, normalized by the pair count in compute_terms
            if self.use_friendship:
                for friend_id in self.store.friends_of[user_id]:
                    terms.friendship += _sqr_dist(u, view.user(friend_id))
        return terms

    def _venue_terms(self, view: FactorView, venue_ids: Sequence[str]) -> LikelihoodTerms:
        terms = LikelihoodTerms()
        for venue_id in venue_ids:
            v = view.venue(venue_id)
            terms.venue_regularization += self.params.lambda_v * float(v @ v)
        return terms

    def _competition(self, view: FactorView, u: np.ndarray, venue_id: str, user_id: str) -> float:
        neighbors = view.neighbor_matrix(venue_id)
        if len(neighbors) == 0:
            return 0.0
        margins = float(u @ view.venue(venue_id)) - neighbors @ u
        total = float(np.sum(self.link.log_prob(margins)))
        if not math.isfinite(total):
            self.guard.report(f"competition term of user {user_id} at venue {venue_id} is {total}; skipped")
            return 0.0
        return total

    def _log_inner(self, inner: float, user_id: str, area_id: int) -> float:
        if inner > 0 and math.isfinite(inner):
            return math.log(inner)
        self.guard.report(f"<user {user_id}, area {area_id}> = {inner} is not a valid log argument; skipped")
        return 0.0


def _sqr_dist(a: np.ndarray, b: np.ndarray) -> float:
    d = a - b
    return float(d @ d)
