# services/gradient.py - Closed-form gradients of the log-likelihood
import math
from typing import Optional

import numpy as np

from venuecomp.domain.models import FactorView, Parameters
from venuecomp.services.link import LinkFunction
from venuecomp.services.numeric import NumericGuard
from venuecomp.services.store import EntityStore


class GradientEngine:
    """
    Gradients of LikelihoodEngine's objective with respect to a single user's
    or venue's factor vector. All margins go through the same link as the
    likelihood, so finite differences of one match the other.
    """

    def __init__(self, store: EntityStore, link: LinkFunction, params: Parameters,
                 use_friendship: bool = False, guard: Optional[NumericGuard] = None):
        self.store = store
        self.link = link
        self.params = params
        self.use_friendship = use_friendship
        self.guard = guard or NumericGuard()

    def user_gradient(self, user_id: str, view: FactorView) -> np.ndarray:
        user = self.store.users[user_id]
        u = view.user(user_id)
        grad = np.zeros(self.store.k)

        for venue_id in user.venue_ids:
            w = user.checkins[venue_id]
            v = view.venue(venue_id)

            # 1st part: choice of area
            area_id = self.store.venues[venue_id].area_id
            area_sum = view.area_sum(area_id)
            inner = float(u @ area_sum)
            if self._valid_log_argument(inner, user_id, area_id):
                grad += (w / inner) * area_sum

            # 2nd part: the venue against each of its neighbors
            neighbors = view.neighbor_matrix(venue_id)
            if len(neighbors):
                coef = self.link.d_log_prob(float(u @ v) - neighbors @ u)
                grad += w * (coef.sum() * v - coef @ neighbors)

        # regularization
        grad -= 2.0 * self.params.lambda_u * u

        # friendship network: pairs where the user is on either side
        if self.use_friendship and self.store.num_friend_pairs > 0:
            pull = np.zeros(self.store.k)
            for friend_id in self.store.friends_of[user_id]:
                pull += view.user(friend_id) - u
            for follower_id in self.store.followers_of[user_id]:
                pull += view.user(follower_id) - u
            grad += (2.0 * self.params.lambda_f / self.store.num_friend_pairs) * pull

        return grad

    def venue_gradient(self, venue_id: str, view: FactorView) -> np.ndarray:
        venue = self.store.venues[venue_id]
        x = view.venue(venue_id)
        grad = np.zeros(self.store.k)
        users = self.store.users

        # 1st part: the venue is inside the area sum of every venue in its area
        area = self.store.areas[venue.area_id]
        area_sum = view.area_sum(area.id)
        for member_id in area.venue_ids:
            for user_id in self.store.venues[member_id].visitors:
                w = users[user_id].checkins_at(member_id)
                if w == 0:
                    continue
                u = view.user(user_id)
                inner = float(u @ area_sum)
                if self._valid_log_argument(inner, user_id, area.id):
                    grad += (w / inner) * u

        # 2nd part: the venue wins against its neighbors
        neighbors = view.neighbor_matrix(venue_id)
        if len(neighbors):
            for user_id in venue.visitors:
                w = users[user_id].checkins_at(venue_id)
                u = view.user(user_id)
                coef = self.link.d_log_prob(float(u @ x) - neighbors @ u)
                grad += w * float(coef.sum()) * u

        # 3rd part: the venue loses as a neighbor of venues others checked in at
        for neighbor_id in venue.neighbors:
            n = view.venue(neighbor_id)
            for user_id in self.store.venues[neighbor_id].visitors:
                w = users[user_id].checkins_at(neighbor_id)
                u = view.user(user_id)
                coef = float(self.link.d_log_prob(float(u @ n) - float(u @ x)))
                grad -= w * coef * u

        # regularization
        grad -= 2.0 * self.params.lambda_v * x

        return grad

    def pair_user_gradient(self, user_id: str, venue_id: str, view: FactorView) -> np.ndarray:
        """Gradient of LikelihoodEngine.compute_pair with respect to the user"""
        u = view.user(user_id)
        v = view.venue(venue_id)
        w = self.store.users[user_id].checkins_at(venue_id)
        data = np.zeros(self.store.k)

        area_id = self.store.venues[venue_id].area_id
        area_sum = view.area_sum(area_id)
        inner = float(u @ area_sum)
        if self._valid_log_argument(inner, user_id, area_id):
            data += area_sum / inner

        neighbors = view.neighbor_matrix(venue_id)
        if len(neighbors):
            coef = self.link.d_log_prob(float(u @ v) - neighbors @ u)
            data += coef.sum() * v - coef @ neighbors

        grad = w * data - 2.0 * self.params.lambda_u * u

        if self.use_friendship:
            friends = self.store.friends_of[user_id]
            if friends:
                pull = np.sum([view.user(f) - u for f in friends], axis=0)
                grad += (2.0 * self.params.lambda_f / len(friends)) * pull

        return grad

    def pair_venue_gradient(self, user_id: str, venue_id: str, view: FactorView) -> np.ndarray:
        """Gradient of LikelihoodEngine.compute_pair with respect to the venue"""
        u = view.user(user_id)
        v = view.venue(venue_id)
        w = self.store.users[user_id].checkins_at(venue_id)

        area_id = self.store.venues[venue_id].area_id
        inner = float(u @ view.area_sum(area_id))
        total = 1.0 / inner if self._valid_log_argument(inner, user_id, area_id) else 0.0

        neighbors = view.neighbor_matrix(venue_id)
        if len(neighbors):
            total += float(np.sum(self.link.d_log_prob(float(u @ v) - neighbors @ u)))

        return w * total * u - 2.0 * self.params.lambda_v * v

    def _valid_log_argument(self, inner: float, user_id: str, area_id: int) -> bool:
        if inner > 0 and math.isfinite(inner):
            return True
        self.guard.report(f"<user {user_id}, area {area_id}> = {inner} in a gradient; term skipped")
        return False
