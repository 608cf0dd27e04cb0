import pytest

from pricecast.cache import ResultCache


class _Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_get_returns_value_within_ttl():
    clock = _Clock()
    cache = ResultCache(ttl_seconds=10, max_entries=4, clock=clock)
    cache.set("AAPL", {"p": 1})

    clock.now = 9.9
    assert cache.get("AAPL") == {"p": 1}


def test_entries_expire_after_ttl():
    clock = _Clock()
    cache = ResultCache(ttl_seconds=10, max_entries=4, clock=clock)
    cache.set("AAPL", 1)

    clock.now = 10.0
    assert cache.get("AAPL") is None
    assert cache.get("AAPL", "missing") == "missing"
    assert len(cache) == 0


def test_full_cache_drops_expired_entries_first():
    clock = _Clock()
    cache = ResultCache(ttl_seconds=10, max_entries=2, clock=clock)
    cache.set("old", 1)
    clock.now = 5.0
    cache.set("fresh", 2)

    clock.now = 12.0  # "old" expired, "fresh" still valid
    cache.set("new", 3)

    assert cache.get("fresh") == 2
    assert cache.get("new") == 3
    assert cache.get("old") is None


def test_full_cache_evicts_oldest_when_nothing_expired():
    clock = _Clock()
    cache = ResultCache(ttl_seconds=100, max_entries=2, clock=clock)
    cache.set("a", 1)
    cache.set("b", 2)
    cache.set("c", 3)

    assert cache.get("a") is None
    assert cache.get("b") == 2
    assert cache.get("c") == 3


def test_overwrite_refreshes_timestamp():
    clock = _Clock()
    cache = ResultCache(ttl_seconds=10, max_entries=2, clock=clock)
    cache.set("a", 1)
    clock.now = 8.0
    cache.set("a", 2)
    clock.now = 15.0

    assert cache.get("a") == 2


@pytest.mark.parametrize("ttl, size", [(0, 1), (-1, 1), (1, 0)])
def test_invalid_arguments(ttl, size):
    with pytest.raises(ValueError):
        ResultCache(ttl_seconds=ttl, max_entries=size)


def test_clear():
    cache = ResultCache(ttl_seconds=1, max_entries=1)
    cache.set("a", 1)
    cache.clear()
    assert len(cache) == 0
