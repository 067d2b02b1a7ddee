import numpy as np
import pytest

from venuecomp.config import Settings
from venuecomp.usecases.checkin_model import build_model

# Two grid cells of 0.1 degree, stacked north-south: v1, v2 in the south cell, v3, v4 in the north one
LOCATIONS = {
    "v1": (10.01, 20.01),
    "v2": (10.05, 20.05),
    "v3": (10.15, 20.02),
    "v4": (10.18, 20.08),
}

CHECKINS = {
    "u1": {"v1": 3, "v3": 1},
    "u2": {"v2": 2, "v4": 4, "v1": 1},
    "u3": {"v3": 5},
}

# "ghost" is not a user of the dataset and must be skipped
FRIENDSHIPS = {
    "u1": ["u2", "ghost"],
    "u3": ["u2"],
}

EPS = 1e-4


def make_settings(**overrides) -> Settings:
    values = dict(
        FACTOR_DIM=3,
        STEEPNESS=1.0,
        LINK="logistic",
        LAMBDA_U=0.01,
        LAMBDA_V=0.02,
        LAMBDA_F=0.05,
        USE_FRIENDSHIP=True,
        GRID_SCALE=0.1,
        GRID_ROUND_PLACES=1,
        SEED=7,
        NUM_WORKERS=2,
        LEARNING_RATE=-1e-5,
    )
    values.update(overrides)
    return Settings(**values)


def make_model(checkins=None, locations=None, friendships=FRIENDSHIPS, **overrides):
    return build_model(
        checkins if checkins is not None else CHECKINS,
        locations if locations is not None else LOCATIONS,
        friendships,
        make_settings(**overrides),
    )


@pytest.fixture
def model():
    m = make_model()
    yield m
    m.close()


def central_difference(evaluate, getter, setter, index, eps=EPS):
    """(f(x + eps) - f(x - eps)) / (2 eps) along one component, restoring x afterwards"""
    base = np.array(getter())
    try:
        plus = base.copy()
        plus[index] += eps
        setter(plus)
        high = evaluate()
        minus = base.copy()
        minus[index] -= eps
        setter(minus)
        low = evaluate()
    finally:
        setter(base)
    return (high - low) / (2.0 * eps)
