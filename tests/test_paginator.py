"""
tests/test_paginator.py
"""
import pytest

from inkwell.paginator import PAGE_WINDOW, paginate, parse_page


@pytest.mark.parametrize(
    "requested,total,size,current,pages,offset",
    [
        (1, 0, 10, 1, 1, 0),          # empty list still has one page
        (999, 95, 10, 10, 10, 90),    # past the end → clamped
        (3, 25, 10, 3, 3, 20),
        (0, 25, 10, 1, 3, 0),
        (-4, 25, 10, 1, 3, 0),
        (2, 20, 10, 2, 2, 10),        # exact multiple, no empty tail page
    ],
)
def test_paginate_clamps(requested, total, size, current, pages, offset):
    p = paginate(requested, total, size)
    assert (p.current_page, p.total_pages, p.offset) == (current, pages, offset)
    assert 1 <= p.current_page <= p.total_pages


def test_window_covers_everything_when_few_pages():
    assert paginate(2, 30, 10).display_range == (1, 2, 3)


def test_window_is_centred_and_full_width():
    p = paginate(10, 200, 10, window=5)
    assert p.display_range == (8, 9, 10, 11, 12)
    assert p.show_first and p.show_last


@pytest.mark.parametrize("page,expected", [(1, (1, 2, 3, 4, 5)), (20, (16, 17, 18, 19, 20))])
def test_window_shifts_at_the_edges(page, expected):
    p = paginate(page, 200, 10, window=5)
    assert p.display_range == expected
    assert len(p.display_range) == 5


def test_default_window_size():
    p = paginate(50, 1000, 10)
    assert len(p.display_range) == PAGE_WINDOW
    assert p.current_page in p.display_range


def test_prev_next():
    first, middle, last = (paginate(n, 30, 10) for n in (1, 2, 3))
    assert (first.prev_page, first.next_page) == (None, 2)
    assert (middle.prev_page, middle.next_page) == (1, 3)
    assert (last.prev_page, last.next_page) == (2, None)


def test_to_dict_keys():
    d = paginate(2, 25, 10).to_dict()
    assert d == {
        "currentPage": 2,
        "totalPages": 3,
        "pageSize": 10,
        "total": 25,
        "displayRange": [1, 2, 3],
        "prevPage": 1,
        "nextPage": 3,
    }


@pytest.mark.parametrize("size,window", [(0, 9), (-1, 9), (10, 0)])
def test_paginate_rejects_bad_sizes(size, window):
    with pytest.raises(ValueError):
        paginate(1, 10, size, window=window)


@pytest.mark.parametrize("raw,expected", [("3", 3), (None, 1), ("abc", 1), ("-2", 1), (7, 7)])
def test_parse_page(raw, expected):
    assert parse_page(raw) == expected
