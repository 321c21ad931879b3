"""
Paging and sorting value types.

PageRequest describes which window of a result to fetch; Page and Slice are
what comes back. A Page knows the total row count (one extra COUNT query),
a Slice only knows whether another window follows (it fetches size + 1 rows).
"""

import math
from dataclasses import dataclass, field
from typing import Callable, Generic, Iterator, List, Optional, Sequence, Tuple, TypeVar

from datarepo.config import settings
from datarepo.core.constants import Direction

T = TypeVar("T")
U = TypeVar("U")


@dataclass(frozen=True)
class Order:
    """One ORDER BY item: a property path and a direction."""

    property: str
    direction: Direction = Direction.ASC
    ignore_case: bool = False

    @classmethod
    def asc(cls, property: str) -> "Order":
        return cls(property, Direction.ASC)

    @classmethod
    def desc(cls, property: str) -> "Order":
        return cls(property, Direction.DESC)

    @property
    def is_ascending(self) -> bool:
        return self.direction is Direction.ASC

    def with_ignore_case(self) -> "Order":
        return Order(self.property, self.direction, True)


@dataclass(frozen=True)
class Sort:
    """
    Ordered collection of Order items.

    Usage:
        Sort.by("username")
        Sort.by("username", "age", direction=Direction.DESC)
        Sort.by_orders(Order.desc("age"), Order.asc("username"))
        Sort.by("age").and_(Sort.by("username"))
    """

    orders: Tuple[Order, ...] = ()

    @classmethod
    def by(cls, *properties: str, direction: Direction = Direction.ASC) -> "Sort":
        if not properties:
            raise ValueError("At least one property is required")
        return cls(tuple(Order(p, direction) for p in properties))

    @classmethod
    def by_orders(cls, *orders: Order) -> "Sort":
        return cls(tuple(orders))

    @classmethod
    def unsorted(cls) -> "Sort":
        return cls()

    @property
    def is_sorted(self) -> bool:
        return bool(self.orders)

    def ascending(self) -> "Sort":
        return Sort(tuple(Order(o.property, Direction.ASC, o.ignore_case) for o in self.orders))

    def descending(self) -> "Sort":
        return Sort(tuple(Order(o.property, Direction.DESC, o.ignore_case) for o in self.orders))

    def and_(self, other: "Sort") -> "Sort":
        return Sort(self.orders + other.orders)

    def __iter__(self) -> Iterator[Order]:
        return iter(self.orders)

    def __bool__(self) -> bool:
        return self.is_sorted


@dataclass(frozen=True)
class PageRequest:
    """
    Zero-based page index, page size and sort.

    Usage:
        PageRequest.of(0, 3, Sort.by("username", direction=Direction.DESC))
    """

    page: int = 0
    size: int = field(default_factory=lambda: settings.default_page_size)
    sort: Sort = field(default_factory=Sort.unsorted)

    def __post_init__(self):
        if self.page < 0:
            raise ValueError(f"Page index must not be less than zero, got {self.page}")
        if self.size < 1:
            raise ValueError(f"Page size must not be less than one, got {self.size}")
        if self.size > settings.max_page_size:
            raise ValueError(f"Page size must not exceed {settings.max_page_size}, got {self.size}")

    @classmethod
    def of(cls, page: int, size: int, sort: Optional[Sort] = None) -> "PageRequest":
        return cls(page, size, sort or Sort.unsorted())

    @classmethod
    def of_size(cls, size: int) -> "PageRequest":
        return cls(0, size)

    @property
    def offset(self) -> int:
        return self.page * self.size

    def next(self) -> "PageRequest":
        return PageRequest(self.page + 1, self.size, self.sort)

    def previous_or_first(self) -> "PageRequest":
        return PageRequest(self.page - 1, self.size, self.sort) if self.page > 0 else self

    def first(self) -> "PageRequest":
        return PageRequest(0, self.size, self.sort)

    def with_page(self, page: int) -> "PageRequest":
        return PageRequest(page, self.size, self.sort)

    @property
    def has_previous(self) -> bool:
        return self.page > 0


class Slice(Generic[T]):
    """A window of results that knows whether another window follows."""

    def __init__(self, content: Sequence[T], pageable: PageRequest, has_next: bool):
        self.content: List[T] = list(content)
        self.pageable = pageable
        self._has_next = has_next

    @property
    def number(self) -> int:
        return self.pageable.page

    @property
    def size(self) -> int:
        return self.pageable.size

    @property
    def sort(self) -> Sort:
        return self.pageable.sort

    @property
    def number_of_elements(self) -> int:
        return len(self.content)

    @property
    def has_content(self) -> bool:
        return bool(self.content)

    @property
    def has_next(self) -> bool:
        return self._has_next

    @property
    def has_previous(self) -> bool:
        return self.pageable.has_previous

    @property
    def is_first(self) -> bool:
        return not self.has_previous

    @property
    def is_last(self) -> bool:
        return not self.has_next

    def next_pageable(self) -> Optional[PageRequest]:
        return self.pageable.next() if self.has_next else None

    def previous_pageable(self) -> Optional[PageRequest]:
        return self.pageable.previous_or_first() if self.has_previous else None

    def map(self, converter: Callable[[T], U]) -> "Slice[U]":
        return Slice([converter(item) for item in self.content], self.pageable, self._has_next)

    def __iter__(self) -> Iterator[T]:
        return iter(self.content)

    def __len__(self) -> int:
        return len(self.content)

    def __repr__(self) -> str:
        return f"<Slice(number={self.number}, size={self.size}, elements={self.number_of_elements}, has_next={self.has_next})>"


class Page(Slice[T]):
    """A Slice that also carries the total number of matching rows."""

    def __init__(self, content: Sequence[T], pageable: PageRequest, total: int):
        content = list(content)
        # a partial last page fixes the total regardless of what the count said
        if content and pageable.offset + pageable.size > total:
            total = pageable.offset + len(content)
        self.total_elements = total
        super().__init__(content, pageable, pageable.page + 1 < math.ceil(total / pageable.size))

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total_elements / self.size)

    def map(self, converter: Callable[[T], U]) -> "Page[U]":
        return Page([converter(item) for item in self.content], self.pageable, self.total_elements)

    def __repr__(self) -> str:
        return f"<Page(number={self.number}, total_pages={self.total_pages}, total_elements={self.total_elements})>"


def resolve_total(pageable: PageRequest, content_size: int, count: Callable[[], int]) -> int:
    """
    Total for a page, skipping the count query when the content already
    determines it (first page not full, or a partial page further on).
    """
    if pageable.offset == 0 and content_size < pageable.size:
        return content_size
    if content_size != 0 and content_size < pageable.size:
        return pageable.offset + content_size
    return count()
