"""
Tests for cache key construction and dependency snapshots.
"""
from decocache.cache import build_key, dependency_snapshot


class TestBuildKey:
    def test_insertion_order_does_not_matter(self):
        first = build_key("douban", {"kind": "movie", "category": "hot", "page": 2})
        second = build_key("douban", {"page": 2, "category": "hot", "kind": "movie"})
        assert first == second
        assert first == "douban-category=hot&kind=movie&page=2"

    def test_missing_and_empty_values_are_dropped(self):
        explicit = build_key("search", {"q": "alien", "source": None, "year": ""})
        assert explicit == build_key("search", {"q": "alien"})
        assert explicit == "search-q=alien"

    def test_no_params_gives_bare_prefix(self):
        assert build_key("sources", {}) == "sources-"
        assert build_key("sources") == "sources-"
        assert build_key("sources", {"a": None}) == "sources-"

    def test_keys_sorted_by_byte_value(self):
        # Uppercase sorts before lowercase in byte order
        assert build_key("p", {"b": 1, "B": 2, "a": 3}) == "p-B=2&a=3&b=1"

    def test_scalar_rendering(self):
        key = build_key("p", {"adult": False, "hd": True, "score": 8.0, "ratio": 0.5, "page": 0})
        assert key == "p-adult=false&hd=true&page=0&ratio=0.5&score=8"

    def test_distinct_params_give_distinct_keys(self):
        assert build_key("douban", {"kind": "movie"}) != build_key("douban", {"kind": "tv"})


class TestDependencySnapshot:
    def test_equal_contents_equal_snapshot(self):
        assert dependency_snapshot(["movie", {"a": 1, "b": 2}]) == dependency_snapshot(
            ["movie", {"b": 2, "a": 1}]
        )

    def test_tuple_and_list_are_equivalent(self):
        assert dependency_snapshot(("movie", 1)) == dependency_snapshot(["movie", 1])

    def test_different_values_differ(self):
        assert dependency_snapshot(["movie", 1]) != dependency_snapshot(["movie", 2])
        assert dependency_snapshot(["1"]) != dependency_snapshot([1])

    def test_non_json_values_still_serialize(self):
        snapshot = dependency_snapshot([{"b", "a"}, object])
        assert snapshot.startswith('[["a","b"]')
