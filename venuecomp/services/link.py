# services/link.py - Link functions for the venue competition term
import math
from abc import ABC, abstractmethod

import numpy as np
from scipy.special import expit, log_expit, log_ndtr, ndtr

from venuecomp.domain.errors import ConfigurationError

_LOG_SQRT_2PI = 0.5 * math.log(2.0 * math.pi)


class LinkFunction(ABC):
    """
    Maps a score margin to the probability that a venue beats its neighbor.

    Each link declares its log value and the derivative of that log value in one
    place, so the likelihood and the gradients use the same functional form.
    """

    name = "link"

    def __init__(self, steepness: float = 1.0):
        if steepness <= 0:
            raise ConfigurationError(f"Steepness must be positive, got {steepness}")
        self.steepness = steepness

    @abstractmethod
    def prob(self, x):
        """link(x)"""
        pass

    @abstractmethod
    def log_prob(self, x):
        """log(link(x))"""
        pass

    @abstractmethod
    def d_log_prob(self, x):
        """d/dx log(link(x))"""
        pass

    def __repr__(self):
        return f"{type(self).__name__}(steepness={self.steepness})"


class LogisticLink(LinkFunction):
    """1 / (1 + exp(-steepness * x)); steepness 2 gives (1 + tanh(x)) / 2"""

    name = "logistic"

    def prob(self, x):
        return expit(self.steepness * np.asarray(x, dtype=float))

    def log_prob(self, x):
        return log_expit(self.steepness * np.asarray(x, dtype=float))

    def d_log_prob(self, x):
        return self.steepness * expit(-self.steepness * np.asarray(x, dtype=float))


class ProbitLink(LinkFunction):
    """Standard normal CDF of steepness * x"""

    name = "probit"

    def prob(self, x):
        return ndtr(self.steepness * np.asarray(x, dtype=float))

    def log_prob(self, x):
        return log_ndtr(self.steepness * np.asarray(x, dtype=float))

    def d_log_prob(self, x):
        z = self.steepness * np.asarray(x, dtype=float)
        # pdf(z) / cdf(z), computed in log space
        return self.steepness * np.exp(-0.5 * z * z - _LOG_SQRT_2PI - log_ndtr(z))


LINKS = {
    LogisticLink.name: LogisticLink,
    ProbitLink.name: ProbitLink,
}


def make_link(name: str, steepness: float) -> LinkFunction:
    """Build the link selected by configuration"""
    try:
        link_cls = LINKS[name]
    except KeyError:
        raise ConfigurationError(f"Unknown link function {name!r}, expected one of {sorted(LINKS)}") from None
    return link_cls(steepness)
