# usecases/checkin_model.py - Check-in model: construction, evaluation and training
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional, Sequence

import numpy as np

from venuecomp.adapters.inputs import (
    CheckinTable, FriendTable, LocationTable, as_coordinate, build_users, build_venues
)
from venuecomp.config import Settings, settings as default_settings
from venuecomp.domain.errors import ConfigurationError
from venuecomp.domain.models import Parameters
from venuecomp.services.gradient import GradientEngine
from venuecomp.services.likelihood import AREA_PAIRS, LikelihoodEngine, LikelihoodTerms
from venuecomp.services.link import make_link
from venuecomp.services.numeric import NumericGuard
from venuecomp.services.optimizer import Optimizer, TrainingMode, TrainingState
from venuecomp.services.partitioner import SpatialPartitioner
from venuecomp.services.store import EntityStore

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def validate_settings(config: Settings) -> None:
    """Reject settings the model cannot run with"""
    if config.FACTOR_DIM <= 0:
        raise ConfigurationError(f"FACTOR_DIM must be positive, got {config.FACTOR_DIM}")
    if config.STEEPNESS <= 0:
        raise ConfigurationError(f"STEEPNESS must be positive, got {config.STEEPNESS}")
    for name in ("LAMBDA_U", "LAMBDA_V", "LAMBDA_F"):
        if getattr(config, name) < 0:
            raise ConfigurationError(f"{name} must be non-negative, got {getattr(config, name)}")
    if config.AREA_PAIRS not in AREA_PAIRS:
        raise ConfigurationError(f"AREA_PAIRS must be one of {AREA_PAIRS}, got {config.AREA_PAIRS!r}")
    if config.TRAINING_MODE not in {mode.value for mode in TrainingMode}:
        raise ConfigurationError(f"Unknown TRAINING_MODE {config.TRAINING_MODE!r}")
    if config.MAX_ITERATIONS <= 0:
        raise ConfigurationError(f"MAX_ITERATIONS must be positive, got {config.MAX_ITERATIONS}")
    if config.NUM_WORKERS <= 0:
        raise ConfigurationError(f"NUM_WORKERS must be positive, got {config.NUM_WORKERS}")
    if config.INIT_LOW <= 0 or config.INIT_HIGH <= config.INIT_LOW:
        raise ConfigurationError(
            f"Initial factor range must be positive and non-empty, got [{config.INIT_LOW}, {config.INIT_HIGH})"
        )


class CheckinModel:
    """Latent factors of users and venues fitted to check-in counts"""

    def __init__(self, store: EntityStore, config: Optional[Settings] = None):
        self.config = config or default_settings
        validate_settings(self.config)
        if store.k != self.config.FACTOR_DIM:
            raise ConfigurationError(f"Store holds {store.k}-dimensional factors, FACTOR_DIM is {self.config.FACTOR_DIM}")
        if self.config.USE_FRIENDSHIP and not store.has_friendship_source:
            raise ConfigurationError("USE_FRIENDSHIP is set but no user carries a friend list")
        if self.config.LEARNING_RATE >= 0:
            logger.warning(f"⚠️  LEARNING_RATE {self.config.LEARNING_RATE} is non-negative: updates will descend")

        self.store = store
        self.link = make_link(self.config.LINK, self.config.STEEPNESS)
        self.params = Parameters(self.config.LAMBDA_U, self.config.LAMBDA_V, self.config.LAMBDA_F)
        self.guard = NumericGuard(self.config.INSTABILITY_TOLERANCE)
        self.executor = ThreadPoolExecutor(max_workers=self.config.NUM_WORKERS)

        self.likelihood = LikelihoodEngine(
            store, self.link, self.params,
            use_friendship=self.config.USE_FRIENDSHIP,
            area_pairs=self.config.AREA_PAIRS,
            guard=self.guard,
            executor=self.executor,
            num_workers=self.config.NUM_WORKERS,
        )
        self.gradients = GradientEngine(
            store, self.link, self.params,
            use_friendship=self.config.USE_FRIENDSHIP,
            guard=self.guard,
        )
        self.optimizer = Optimizer(
            store, self.likelihood, self.gradients, self.executor, self.guard,
            learning_rate=self.config.LEARNING_RATE,
            threshold=self.config.CONVERGENCE_THRESHOLD,
            max_iterations=self.config.MAX_ITERATIONS,
            show_progress=self.config.SHOW_PROGRESS,
        )

        logger.info(f"# of users: {len(store.users)}")
        logger.info(f"# of venues: {len(store.venues)}")
        logger.info(f"# of areas: {len(store.areas)}")

    # Likelihood

    def compute_log_likelihood(self, user_id: Optional[str] = None, venue_id: Optional[str] = None,
                               parallel: bool = False) -> float:
        """Log-likelihood of the whole model, or of one (user, venue) pair when both ids are given"""
        if user_id is not None or venue_id is not None:
            if user_id is None or venue_id is None:
                raise ValueError("Both user_id and venue_id are required for a pair log-likelihood")
            self.store.get_user(user_id)
            self.store.get_venue(venue_id)
            with self.guard.scope():
                return self.likelihood.compute_pair(user_id, venue_id)
        with self.guard.scope():
            return self.likelihood.compute(parallel=parallel)

    def compute_parallel_log_likelihood(self) -> float:
        with self.guard.scope():
            return self.likelihood.compute(parallel=True)

    def log_likelihood_terms(self, parallel: bool = False) -> LikelihoodTerms:
        with self.guard.scope():
            return self.likelihood.compute_terms(parallel=parallel)

    def score(self, user_id: str, venue_id: str) -> float:
        """Preference score used to rank venues for a user"""
        self.store.get_user(user_id)
        self.store.get_venue(venue_id)
        with self.guard.scope():
            return self.likelihood.score(user_id, venue_id)

    # Gradients

    def user_gradient(self, user_id: str) -> np.ndarray:
        self.store.get_user(user_id)
        with self.guard.scope():
            return self.gradients.user_gradient(user_id, self.store.snapshot())

    def venue_gradient(self, venue_id: str) -> np.ndarray:
        self.store.get_venue(venue_id)
        with self.guard.scope():
            return self.gradients.venue_gradient(venue_id, self.store.snapshot())

    def pair_user_gradient(self, user_id: str, venue_id: str) -> np.ndarray:
        self.store.get_user(user_id)
        self.store.get_venue(venue_id)
        with self.guard.scope():
            return self.gradients.pair_user_gradient(user_id, venue_id, self.store.live_view())

    def pair_venue_gradient(self, user_id: str, venue_id: str) -> np.ndarray:
        self.store.get_user(user_id)
        self.store.get_venue(venue_id)
        with self.guard.scope():
            return self.gradients.pair_venue_gradient(user_id, venue_id, self.store.live_view())

    # Training

    def train(self) -> None:
        """Run the optimizer to a terminal state, updating every factor in place"""
        self.optimizer.run(TrainingMode(self.config.TRAINING_MODE))

    @property
    def state(self) -> TrainingState:
        return self.optimizer.state

    @property
    def history(self) -> List[float]:
        return list(self.optimizer.history)

    # Factors

    def get_user_factors(self, user_id: str) -> List[float]:
        return self.store.get_user(user_id).factors.tolist()

    def get_venue_factors(self, venue_id: str) -> List[float]:
        return self.store.get_venue(venue_id).factors.tolist()

    def set_user_factors(self, user_id: str, factors: Sequence[float]) -> None:
        self.store.set_user_factors(user_id, factors)

    def set_venue_factors(self, venue_id: str, factors: Sequence[float]) -> None:
        self.store.set_venue_factors(venue_id, factors)

    def get_model_info(self) -> dict:
        """Get model information"""
        return {
            "k": self.store.k,
            "steepness": self.link.steepness,
            "link": self.link.name,
            "is_friend": self.config.USE_FRIENDSHIP,
            "lambda_u": self.params.lambda_u,
            "lambda_v": self.params.lambda_v,
            "lambda_f": self.params.lambda_f,
            "area_pairs": self.config.AREA_PAIRS,
            "num_users": len(self.store.users),
            "num_venues": len(self.store.venues),
            "num_areas": len(self.store.areas),
            "state": self.state.value,
            "iterations": self.optimizer.iterations,
        }

    def close(self) -> None:
        self.executor.shutdown(wait=True)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


def build_model(checkins: CheckinTable, locations: LocationTable, friendships: Optional[FriendTable] = None,
                config: Optional[Settings] = None) -> CheckinModel:
    """Partition venues, initialize factors and assemble a model from the loaders' tables"""
    config = config or default_settings
    validate_settings(config)
    if config.USE_FRIENDSHIP and friendships is None:
        raise ConfigurationError("USE_FRIENDSHIP is set but no friendship table was given")

    coordinates = {venue_id: as_coordinate(loc) for venue_id, loc in locations.items()}
    partitioner = SpatialPartitioner(config.GRID_SCALE, config.GRID_ROUND_PLACES, config.AVERAGE_AREA_LOCATION)
    partition = partitioner.partition(coordinates)

    rng = np.random.default_rng(config.SEED)
    k = config.FACTOR_DIM
    users = build_users(checkins, friendships, k, rng, config.INIT_LOW, config.INIT_HIGH)
    venues = build_venues(coordinates, partition, checkins, k, rng, config.INIT_LOW, config.INIT_HIGH)

    store = EntityStore(users, venues, partition.areas, k)
    return CheckinModel(store, config)
