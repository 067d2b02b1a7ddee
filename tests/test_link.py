import numpy as np
import pytest

from venuecomp.domain.errors import ConfigurationError
from venuecomp.services.link import LogisticLink, ProbitLink, make_link

XS = np.array([-30.0, -3.0, -0.5, 0.0, 0.7, 4.0, 30.0])


def test_steepness_one_is_the_sigmoid():
    link = LogisticLink(1.0)
    assert link.prob(0.0) == pytest.approx(0.5)
    assert link.prob(XS) == pytest.approx(1.0 / (1.0 + np.exp(-XS)))


def test_steepness_two_is_shifted_tanh():
    link = LogisticLink(2.0)
    assert link.prob(XS) == pytest.approx((1.0 + np.tanh(XS)) / 2.0)


def test_probit_is_normal_cdf():
    link = ProbitLink(1.0)
    assert link.prob(0.0) == pytest.approx(0.5)
    assert link.prob(1.0) == pytest.approx(0.8413447, rel=1e-6)


@pytest.mark.parametrize("link", [LogisticLink(1.0), LogisticLink(2.0), LogisticLink(0.5), ProbitLink(1.0), ProbitLink(3.0)])
def test_log_prob_is_finite_for_large_margins(link):
    values = link.log_prob(XS)
    assert np.isfinite(values).all()
    assert (values <= 0.0).all()


@pytest.mark.parametrize("link", [LogisticLink(1.0), LogisticLink(2.0), ProbitLink(1.0), ProbitLink(2.5)])
def test_derivative_matches_finite_difference(link):
    xs = np.linspace(-4.0, 4.0, 17)
    eps = 1e-6
    numeric = (link.log_prob(xs + eps) - link.log_prob(xs - eps)) / (2.0 * eps)
    assert link.d_log_prob(xs) == pytest.approx(numeric, rel=1e-5, abs=1e-8)


def test_make_link():
    link = make_link("probit", 2.0)
    assert isinstance(link, ProbitLink)
    assert link.steepness == 2.0


@pytest.mark.parametrize("name,steepness", [("cauchit", 1.0), ("logistic", 0.0), ("probit", -1.0)])
def test_invalid_links_are_configuration_errors(name, steepness):
    with pytest.raises(ConfigurationError):
        make_link(name, steepness)
