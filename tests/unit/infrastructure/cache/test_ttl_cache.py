import pytest

from resilink.domain.exceptions import ConfigurationError
from resilink.domain.models.common import CacheKey
from resilink.infrastructure.cache.ttl_cache import DEFAULT_TTL_SECONDS, TtlCache

@pytest.fixture
def cache(clock):
    return TtlCache(clock=clock)

def test_default_ttl_is_five_minutes():
    assert DEFAULT_TTL_SECONDS == 300
    assert TtlCache().default_ttl == 300

def test_get_returns_value_before_expiry(cache: TtlCache, clock):
    cache.set(CacheKey("k"), {"a": 1})
    clock.advance(299.9)
    assert cache.get(CacheKey("k")) == {"a": 1}

def test_expired_entry_is_evicted_on_read(cache: TtlCache, clock):
    cache.set(CacheKey("k"), "v", ttl=10)
    clock.advance(10)
    assert len(cache) == 1  # nothing sweeps in the background
    assert cache.get(CacheKey("k")) is None
    assert len(cache) == 0

def test_missing_key(cache: TtlCache):
    assert cache.get(CacheKey("nope")) is None

def test_set_overwrites_and_refreshes_expiry(cache: TtlCache, clock):
    cache.set(CacheKey("k"), "old", ttl=5)
    clock.advance(4)
    cache.set(CacheKey("k"), "new", ttl=5)
    clock.advance(4)
    assert cache.get(CacheKey("k")) == "new"

def test_delete_and_clear(cache: TtlCache):
    cache.set(CacheKey("a"), 1)
    cache.set(CacheKey("b"), 2)
    cache.delete(CacheKey("a"))
    cache.delete(CacheKey("missing"))
    assert cache.get(CacheKey("a")) is None
    cache.clear()
    assert len(cache) == 0

@pytest.mark.parametrize("ttl", [0, -1])
def test_non_positive_ttl_is_rejected(cache: TtlCache, ttl):
    with pytest.raises(ConfigurationError):
        cache.set(CacheKey("k"), "v", ttl=ttl)
    with pytest.raises(ConfigurationError):
        TtlCache(default_ttl=ttl)
