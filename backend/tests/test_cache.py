import pytest

from groomery.constants.permissions import Permission
from groomery.services.cache import PermissionCache
from test_utils_seed import FakeClock


def test_entries_expire_after_ttl():
    clock = FakeClock()
    cache = PermissionCache(ttl_seconds=300, clock=clock)
    cache.put('staff', {Permission.VIEW_SERVICES})
    clock.advance(299)
    assert cache.get('staff') == frozenset({Permission.VIEW_SERVICES})
    clock.advance(1)
    assert cache.get('staff') is None
    assert len(cache) == 0


def test_get_or_load_hits_loader_once_per_ttl():
    clock = FakeClock()
    cache = PermissionCache(ttl_seconds=60, clock=clock)
    calls = []

    def loader(name):
        calls.append(name)
        return frozenset({Permission.VIEW_REPORTS})

    assert cache.get_or_load('manager', loader) == {Permission.VIEW_REPORTS}
    cache.get_or_load('manager', loader)
    assert calls == ['manager']
    clock.advance(61)
    cache.get_or_load('manager', loader)
    assert calls == ['manager', 'manager']
    stats = cache.stats()
    assert stats['hits'] == 1 and stats['misses'] == 2


def test_loader_errors_are_not_cached():
    cache = PermissionCache(ttl_seconds=60, clock=FakeClock())

    def boom(name):
        raise RuntimeError('down')

    with pytest.raises(RuntimeError):
        cache.get_or_load('staff', boom)
    assert len(cache) == 0


def test_clear_and_invalid_ttl():
    cache = PermissionCache(ttl_seconds=1, clock=FakeClock())
    cache.put('a', [])
    cache.clear()
    assert cache.get('a') is None
    with pytest.raises(ValueError):
        PermissionCache(ttl_seconds=0)


def test_stats_snapshot():
    cache = PermissionCache(ttl_seconds=60, clock=FakeClock())
    assert cache.stats() == {'size': 0, 'hits': 0, 'misses': 0, 'hit_rate': 0.0}
    cache.put('staff', {Permission.VIEW_SERVICES})
    cache.get('staff')
    cache.get('manager')
    assert cache.stats() == {'size': 1, 'hits': 1, 'misses': 1, 'hit_rate': 0.5}
