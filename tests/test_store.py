import numpy as np
import pytest

from venuecomp.domain.errors import InconsistentStructureError, MissingEntityError
from venuecomp.domain.models import Area, Coordinate, User, Venue
from venuecomp.services.store import EntityStore, freeze_factors

K = 2


def make_venue(venue_id, area_id=0, neighbors=(), visitors=()):
    venue = Venue(
        id=venue_id,
        location=Coordinate(0.0, 0.0),
        factors=np.ones(K),
        visitors=list(visitors),
        neighbors=tuple(neighbors),
    )
    if area_id is not None:
        venue.assign_area(area_id)
    return venue


def make_store(venues, areas=None, users=None):
    if areas is None:
        areas = {0: Area(0, (0, 0), tuple(venues), Coordinate(0.0, 0.0))}
    return EntityStore(users or {}, venues, areas, K)


def valid_venues():
    return {
        "a": make_venue("a", neighbors=["b"], visitors=["u"]),
        "b": make_venue("b", neighbors=["a"]),
    }


def valid_users():
    return {"u": User("u", {"a": 2}, np.ones(K))}


def test_valid_store():
    store = make_store(valid_venues(), users=valid_users())
    assert store.user_ids == ["u"]
    assert store.venue_ids == ["a", "b"]
    assert store.num_friend_pairs == 0
    assert not store.has_friendship_source


def test_asymmetric_neighbors_are_rejected():
    venues = valid_venues()
    venues["b"].neighbors = ()
    with pytest.raises(InconsistentStructureError):
        make_store(venues, users=valid_users())


def test_missing_neighbor_is_rejected():
    venues = valid_venues()
    venues["a"].neighbors = ("b", "zzz")
    with pytest.raises(MissingEntityError):
        make_store(venues, users=valid_users())


def test_self_neighbor_is_rejected():
    venues = {"a": make_venue("a", neighbors=["a"])}
    with pytest.raises(InconsistentStructureError):
        make_store(venues)


def test_missing_area_is_rejected():
    venues = {"a": make_venue("a", area_id=5)}
    with pytest.raises(MissingEntityError):
        make_store(venues)


def test_venue_without_area_is_rejected():
    venues = {"a": make_venue("a", area_id=None)}
    with pytest.raises(MissingEntityError):
        make_store(venues)


def test_area_must_list_its_venues():
    venues = valid_venues()
    areas = {0: Area(0, (0, 0), ("a",), Coordinate(0.0, 0.0))}
    with pytest.raises(InconsistentStructureError):
        make_store(venues, areas=areas, users=valid_users())


def test_checkin_at_unknown_venue_is_rejected():
    users = {"u": User("u", {"a": 2, "nowhere": 1}, np.ones(K))}
    with pytest.raises(MissingEntityError):
        make_store(valid_venues(), users=users)


def test_visitor_lists_must_match_checkins():
    users = {"u": User("u", {"a": 2, "b": 1}, np.ones(K))}
    with pytest.raises(InconsistentStructureError):
        make_store(valid_venues(), users=users)


def test_unknown_visitor_is_rejected():
    venues = valid_venues()
    venues["b"].visitors = ["ghost"]
    with pytest.raises(MissingEntityError):
        make_store(venues, users=valid_users())


def test_negative_checkins_are_rejected():
    with pytest.raises(ValueError):
        User("u", {"a": -1}, np.ones(K))


def test_area_is_assigned_once():
    venue = make_venue("a", area_id=3)
    venue.assign_area(4)
    assert venue.area_id == 3


def test_factors_are_read_only():
    store = make_store(valid_venues(), users=valid_users())
    with pytest.raises(ValueError):
        store.users["u"].factors[0] = 5.0


def test_factor_length_and_values_are_checked():
    store = make_store(valid_venues(), users=valid_users())
    with pytest.raises(ValueError):
        store.set_user_factors("u", [1.0, 2.0, 3.0])
    with pytest.raises(ValueError):
        store.set_venue_factors("a", [1.0, float("nan")])
    with pytest.raises(ValueError):
        freeze_factors([1.0], K)


def test_unknown_ids_raise_missing_entity():
    store = make_store(valid_venues(), users=valid_users())
    with pytest.raises(MissingEntityError):
        store.get_user("nobody")
    with pytest.raises(MissingEntityError):
        store.set_venue_factors("nowhere", [1.0, 1.0])


def test_snapshot_does_not_see_later_writes():
    store = make_store(valid_venues(), users=valid_users())
    snapshot = store.snapshot()
    live = store.live_view()
    store.set_venue_factors("a", [3.0, 4.0])

    assert snapshot.venue("a").tolist() == [1.0, 1.0]
    assert snapshot.area_sum(0).tolist() == [2.0, 2.0]
    assert live.venue("a").tolist() == [3.0, 4.0]
    assert live.area_sum(0).tolist() == [4.0, 5.0]


def test_snapshot_caches_derived_arrays():
    store = make_store(valid_venues(), users=valid_users())
    snapshot = store.snapshot()
    assert snapshot.area_sum(0) is snapshot.area_sum(0)
    matrix = snapshot.neighbor_matrix("a")
    assert matrix.shape == (1, K)
    assert matrix is snapshot.neighbor_matrix("a")
    assert not matrix.flags.writeable


def test_friend_tables():
    users = {
        "u": User("u", {"a": 2}, np.ones(K), friends=["w", "ghost"]),
        "w": User("w", {}, np.ones(K), friends=[]),
    }
    store = make_store(valid_venues(), users=users)
    assert store.friends_of == {"u": ["w"], "w": []}
    assert store.followers_of == {"u": [], "w": ["u"]}
    assert store.num_friend_pairs == 1
    assert store.has_friendship_source
