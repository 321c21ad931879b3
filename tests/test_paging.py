"""Paging and sorting value types."""

import pytest

from datarepo.config import settings
from datarepo.core.constants import Direction
from datarepo.repositories.paging import Order, Page, PageRequest, Slice, Sort, resolve_total


class TestSort:
    def test_by_builds_orders_in_sequence(self):
        sort = Sort.by("username", "age", direction=Direction.DESC)

        assert [o.property for o in sort] == ["username", "age"]
        assert all(o.direction is Direction.DESC for o in sort)

    def test_unsorted_is_falsy(self):
        assert not Sort.unsorted()
        assert Sort.by("age")

    def test_and_appends(self):
        sort = Sort.by("age").and_(Sort.by_orders(Order.desc("username")))

        assert sort.orders == (Order("age"), Order("username", Direction.DESC))

    def test_descending_flips_every_order(self):
        sort = Sort.by("age", "username").descending()

        assert [o.direction for o in sort] == [Direction.DESC, Direction.DESC]

    def test_by_requires_a_property(self):
        with pytest.raises(ValueError):
            Sort.by()

    def test_direction_from_string(self):
        assert Direction.from_string("desc") is Direction.DESC
        with pytest.raises(ValueError):
            Direction.from_string("sideways")


class TestPageRequest:
    def test_offset(self):
        assert PageRequest.of(2, 10).offset == 20

    def test_default_size_comes_from_settings(self):
        assert PageRequest().size == settings.default_page_size

    def test_navigation(self):
        request = PageRequest.of(1, 5, Sort.by("age"))

        assert request.next() == PageRequest.of(2, 5, Sort.by("age"))
        assert request.previous_or_first() == PageRequest.of(0, 5, Sort.by("age"))
        assert request.first().page == 0
        assert PageRequest.of(0, 5).previous_or_first().page == 0

    @pytest.mark.parametrize("page,size", [(-1, 10), (0, 0)])
    def test_rejects_invalid_values(self, page, size):
        with pytest.raises(ValueError):
            PageRequest.of(page, size)

    def test_rejects_size_over_maximum(self):
        with pytest.raises(ValueError):
            PageRequest.of(0, settings.max_page_size + 1)


class TestPage:
    def test_first_of_two_pages(self):
        page = Page(["a", "b", "c"], PageRequest.of(0, 3), 5)

        assert page.total_elements == 5
        assert page.total_pages == 2
        assert page.number == 0
        assert page.is_first
        assert page.has_next
        assert page.next_pageable() == PageRequest.of(1, 3)

    def test_partial_last_page(self):
        page = Page(["d", "e"], PageRequest.of(1, 3), 5)

        assert page.is_last
        assert not page.has_next
        assert page.has_previous
        assert page.number_of_elements == 2

    def test_empty_result(self):
        page = Page([], PageRequest.of(0, 3), 0)

        assert page.total_pages == 0
        assert not page.has_content
        assert not page.has_next

    def test_map_keeps_paging_metadata(self):
        page = Page([1, 2, 3], PageRequest.of(0, 3), 7).map(lambda n: n * 10)

        assert page.content == [10, 20, 30]
        assert page.total_elements == 7
        assert page.total_pages == 3


class TestSlice:
    def test_has_next_flag(self):
        window = Slice([1, 2], PageRequest.of(0, 2), True)

        assert window.has_next
        assert window.is_first
        assert len(window) == 2
        assert list(window.map(str)) == ["1", "2"]

    def test_last_slice(self):
        window = Slice([3], PageRequest.of(1, 2), False)

        assert window.is_last
        assert window.next_pageable() is None
        assert window.previous_pageable() == PageRequest.of(0, 2)


class TestResolveTotal:
    def _counter(self, total):
        calls = []

        def count():
            calls.append(1)
            return total

        return count, calls

    def test_first_page_not_full_skips_count(self):
        count, calls = self._counter(99)

        assert resolve_total(PageRequest.of(0, 10), 4, count) == 4
        assert calls == []

    def test_partial_later_page_skips_count(self):
        count, calls = self._counter(99)

        assert resolve_total(PageRequest.of(2, 10), 3, count) == 23
        assert calls == []

    def test_full_page_runs_count(self):
        count, calls = self._counter(42)

        assert resolve_total(PageRequest.of(0, 10), 10, count) == 42
        assert calls == [1]

    def test_empty_page_past_the_end_runs_count(self):
        count, calls = self._counter(5)

        assert resolve_total(PageRequest.of(3, 10), 0, count) == 5
        assert calls == [1]
