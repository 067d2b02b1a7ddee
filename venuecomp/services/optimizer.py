# services/optimizer.py - Gradient ascent over user and venue factors
import logging
import time
from concurrent.futures import Executor
from enum import Enum
from typing import Callable, List

import numpy as np
from tqdm import tqdm

from venuecomp.domain.errors import NumericInstabilityError
from venuecomp.services.gradient import GradientEngine
from venuecomp.services.likelihood import LikelihoodEngine
from venuecomp.services.numeric import NumericGuard
from venuecomp.services.store import EntityStore

logger = logging.getLogger(__name__)


class TrainingState(str, Enum):
    INITIALIZED = "initialized"
    ITERATING = "iterating"
    CONVERGED = "converged"
    MAX_ITERS_REACHED = "max_iters_reached"
    ABORTED = "aborted"


class TrainingMode(str, Enum):
    BATCH = "batch"
    STOCHASTIC = "stochastic"


def relative_change(previous: float, current: float) -> float:
    """|delta / previous|, or |delta| when previous is exactly zero"""
    delta = current - previous
    if previous == 0.0:
        return abs(delta)
    return abs(delta / previous)


class Optimizer:
    """
    Alternates user and venue updates until the log-likelihood stops moving.

    Batch mode computes every gradient of one role against a frozen snapshot
    before any factor of that role is written; users are updated before venue
    gradients are taken. Stochastic mode walks (user, venue) check-in pairs and
    applies each pair's updates immediately.
    """

    def __init__(self, store: EntityStore, likelihood: LikelihoodEngine, gradients: GradientEngine,
                 executor: Executor, guard: NumericGuard, learning_rate: float = -1e-6,
                 threshold: float = 0.01, max_iterations: int = 10, show_progress: bool = False):
        self.store = store
        self.likelihood = likelihood
        self.gradients = gradients
        self.executor = executor
        self.guard = guard
        self.learning_rate = learning_rate
        self.threshold = threshold
        self.max_iterations = max_iterations
        self.show_progress = show_progress

        self.state = TrainingState.INITIALIZED
        self.iterations = 0
        self.history: List[float] = []

    def run(self, mode: TrainingMode = TrainingMode.BATCH) -> TrainingState:
        step = self.batch_step if TrainingMode(mode) == TrainingMode.BATCH else self.stochastic_step
        self.iterations = 0
        self.state = TrainingState.ITERATING

        try:
            with self.guard.scope():
                start = time.time()
                previous = self.likelihood.compute(parallel=True)
                self.history = [previous]
                logger.info(f"Initial log-likelihood {previous:.6f} in {time.time() - start:.2f}s")

                while self.state == TrainingState.ITERATING:
                    start = time.time()
                    step()
                    current = self.likelihood.compute(parallel=True)
                    self.iterations += 1
                    self.history.append(current)
                    logger.info(f"Iteration {self.iterations}: log-likelihood {current:.6f} "
                                f"in {time.time() - start:.2f}s")

                    if relative_change(previous, current) < self.threshold:
                        self.state = TrainingState.CONVERGED
                    elif self.iterations >= self.max_iterations:
                        self.state = TrainingState.MAX_ITERS_REACHED
                    else:
                        previous = current
        except NumericInstabilityError as e:
            self.state = TrainingState.ABORTED
            logger.error(f"❌ Training aborted after {self.iterations} iterations: {e}")
            raise

        logger.info(f"✅ Training finished: {self.state.value} after {self.iterations} iterations")
        return self.state

    def batch_step(self) -> None:
        # Users: read phase against one snapshot, then write phase
        snapshot = self.store.snapshot()
        user_ids = self.store.user_ids
        user_grads = list(tqdm(
            self.executor.map(lambda uid: self.gradients.user_gradient(uid, snapshot), user_ids),
            total=len(user_ids), desc=f"users {self.iterations + 1}", disable=not self.show_progress,
        ))
        list(self.executor.map(
            lambda item: self._apply("user", item[0], snapshot.user(item[0]), item[1], self.store.set_user_factors),
            zip(user_ids, user_grads),
        ))

        # Venues see the updated users
        snapshot = self.store.snapshot()
        venue_ids = self.store.venue_ids
        venue_grads = list(tqdm(
            self.executor.map(lambda vid: self.gradients.venue_gradient(vid, snapshot), venue_ids),
            total=len(venue_ids), desc=f"venues {self.iterations + 1}", disable=not self.show_progress,
        ))
        list(self.executor.map(
            lambda item: self._apply("venue", item[0], snapshot.venue(item[0]), item[1], self.store.set_venue_factors),
            zip(venue_ids, venue_grads),
        ))

    def stochastic_step(self) -> None:
        view = self.store.live_view()
        user_ids = tqdm(self.store.user_ids, desc=f"sweep {self.iterations + 1}", disable=not self.show_progress)
        for user_id in user_ids:
            for venue_id in self.store.users[user_id].venue_ids:
                u_grad = self.gradients.pair_user_gradient(user_id, venue_id, view)
                self._apply("user", user_id, view.user(user_id), u_grad, self.store.set_user_factors)

                v_grad = self.gradients.pair_venue_gradient(user_id, venue_id, view)
                self._apply("venue", venue_id, view.venue(venue_id), v_grad, self.store.set_venue_factors)

    def _apply(self, role: str, entity_id: str, current: np.ndarray, grad: np.ndarray,
               setter: Callable[[str, np.ndarray], None]) -> None:
        updated = current - self.learning_rate * grad
        if not np.all(np.isfinite(updated)):
            self.guard.report(f"non-finite update for {role} {entity_id}; factors kept")
            return
        setter(entity_id, updated)
