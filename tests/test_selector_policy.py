from collections import Counter
from concurrent.futures import ThreadPoolExecutor

import pytest

from models.models import ROUND_ROBIN, AddressEntry, CacheKey
from repositories.address_cache import AddressCache
from utils.selector_policy import (
    AddressNotFoundError,
    RoundRobinCursor,
    Selector,
    pick_random,
    pick_round_robin,
)

PAIR = ("a:1", "b:2")


def populated(key: CacheKey, addresses: tuple[str, ...]) -> AddressCache:
    cache = AddressCache()
    cache.put(key, AddressEntry(1, addresses))
    return cache


def test_pick_helpers_on_empty():
    assert pick_random([]) is None
    assert pick_round_robin([], 3) is None


def test_pick_round_robin_wraps():
    assert [pick_round_robin(PAIR, i) for i in range(5)] == ["a:1", "b:2", "a:1", "b:2", "a:1"]


def test_select_unpopulated_key_not_found():
    selector = Selector(AddressCache())
    with pytest.raises(AddressNotFoundError) as exc_info:
        selector.select("web")
    assert exc_info.value.key == CacheKey("web", "")


def test_select_empty_address_list_not_found():
    selector = Selector(populated(CacheKey("web"), ()))
    with pytest.raises(AddressNotFoundError):
        selector.select("web")


def test_select_distinguishes_tags():
    selector = Selector(populated(CacheKey("web", "canary"), PAIR))
    assert selector.select("web", "canary") in PAIR
    with pytest.raises(AddressNotFoundError):
        selector.select("web")


def test_random_policy_covers_all_addresses():
    selector = Selector(populated(CacheKey("web"), PAIR))
    seen = Counter(selector.select("web") for _ in range(10_000))
    assert set(seen) == set(PAIR)


def test_round_robin_alternates_strictly():
    key = CacheKey("web")
    selector = Selector(populated(key, PAIR), policies={key: ROUND_ROBIN})
    picks = [selector.select("web") for _ in range(6)]
    assert picks == ["a:1", "b:2", "a:1", "b:2", "a:1", "b:2"]


def test_default_policy_round_robin():
    selector = Selector(populated(CacheKey("web"), PAIR), default_policy=ROUND_ROBIN)
    assert [selector.select("web") for _ in range(3)] == ["a:1", "b:2", "a:1"]


def test_round_robin_concurrent_callers_get_distinct_steps():
    key = CacheKey("web")
    addresses = ("a:1", "b:2", "c:3", "d:4")
    selector = Selector(populated(key, addresses), policies={key: ROUND_ROBIN})

    with ThreadPoolExecutor(max_workers=8) as pool:
        picks = list(pool.map(lambda _: selector.select("web"), range(400)))

    assert Counter(picks) == {a: 100 for a in addresses}


def test_cursor_is_per_key():
    cursor = RoundRobinCursor()
    assert [cursor.advance(CacheKey("a")) for _ in range(3)] == [0, 1, 2]
    assert cursor.advance(CacheKey("b")) == 0


def test_round_robin_empty_entry_not_found_and_cursor_untouched():
    key = CacheKey("web")
    cache = populated(key, ())
    selector = Selector(cache, policies={key: ROUND_ROBIN})

    for _ in range(3):
        with pytest.raises(AddressNotFoundError):
            selector.select("web")

    cache.put(key, AddressEntry(2, PAIR))
    assert selector.select("web") == "a:1"
