import numpy as np
import pytest

from venuecomp.domain.errors import NumericInstabilityError
from venuecomp.services.optimizer import TrainingState, relative_change

from conftest import make_model


def test_relative_change():
    assert relative_change(-100.0, -99.0) == pytest.approx(0.01)
    assert relative_change(10.0, 12.0) == pytest.approx(0.2)
    assert relative_change(0.0, 0.5) == 0.5


def test_fresh_model_is_initialized(model):
    assert model.state == TrainingState.INITIALIZED
    assert model.history == []


def test_one_small_step_does_not_decrease_likelihood():
    with make_model(LEARNING_RATE=-1e-4, MAX_ITERATIONS=1, CONVERGENCE_THRESHOLD=0.0) as m:
        before = m.compute_log_likelihood()
        m.train()
        assert m.state == TrainingState.MAX_ITERS_REACHED
        assert m.history[0] == pytest.approx(before)
        assert m.history[1] >= before


def test_tiny_learning_rate_converges():
    with make_model(LEARNING_RATE=-1e-12, MAX_ITERATIONS=10) as m:
        m.train()
        assert m.state == TrainingState.CONVERGED
        assert m.optimizer.iterations <= 10


def test_zero_threshold_stops_at_max_iterations():
    with make_model(CONVERGENCE_THRESHOLD=0.0, MAX_ITERATIONS=3) as m:
        m.train()
        assert m.state == TrainingState.MAX_ITERS_REACHED
        assert m.optimizer.iterations == 3
        assert len(m.history) == 4


def test_batch_step_updates_users_from_one_snapshot():
    with make_model(LEARNING_RATE=-1e-3) as m:
        expected = {
            user_id: np.array(m.get_user_factors(user_id)) + 1e-3 * m.user_gradient(user_id)
            for user_id in m.store.user_ids
        }
        m.optimizer.batch_step()
        for user_id, factors in expected.items():
            assert m.get_user_factors(user_id) == pytest.approx(factors.tolist())


def test_stochastic_training():
    with make_model(TRAINING_MODE="stochastic", LEARNING_RATE=-1e-4, MAX_ITERATIONS=2) as m:
        before = {user_id: m.get_user_factors(user_id) for user_id in m.store.user_ids}
        m.train()
        assert m.state in (TrainingState.CONVERGED, TrainingState.MAX_ITERS_REACHED)
        assert any(m.get_user_factors(u) != before[u] for u in before)
        assert np.isfinite(m.history).all()


def test_factors_stay_finite_after_training():
    with make_model(MAX_ITERATIONS=5) as m:
        m.train()
        for user_id in m.store.user_ids:
            assert np.isfinite(m.get_user_factors(user_id)).all()
        for venue_id in m.store.venue_ids:
            assert np.isfinite(m.get_venue_factors(venue_id)).all()


@pytest.mark.filterwarnings("ignore::venuecomp.domain.errors.NumericInstabilityWarning")
def test_instability_aborts_training():
    with make_model(INSTABILITY_TOLERANCE=0) as m:
        m.set_user_factors("u1", [-1.0, -1.0, -1.0])
        with pytest.raises(NumericInstabilityError):
            m.train()
        assert m.state == TrainingState.ABORTED


def test_batch_progress_bars(capsys):
    with make_model(SHOW_PROGRESS=True, MAX_ITERATIONS=1, CONVERGENCE_THRESHOLD=0.0) as m:
        m.train()
    err = capsys.readouterr().err
    assert "users 1" in err
    assert "venues 1" in err


def test_progress_is_silent_by_default(capsys):
    with make_model(MAX_ITERATIONS=1, CONVERGENCE_THRESHOLD=0.0) as m:
        m.train()
    err = capsys.readouterr().err
    assert "users 1" not in err
