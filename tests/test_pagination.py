from fastapi import Response

from mes_automation.core.pagination import PageWindow


def test_window_clamps_and_offsets(monkeypatch):
    monkeypatch.setenv("API_MAX_PAGE_SIZE", "20")
    window = PageWindow.from_query(3, 500)
    assert window.page_size == 20
    assert window.offset == 40
    assert PageWindow.from_query(0, 0) == PageWindow(page=1, page_size=1)


def test_invalid_max_falls_back_to_default(monkeypatch):
    monkeypatch.setenv("API_MAX_PAGE_SIZE", "lots")
    assert PageWindow.from_query(1, 1000).page_size == 200


def test_headers_and_envelope():
    window = PageWindow(page=2, page_size=10)
    response = Response()
    window.apply_headers(response, 37)
    assert response.headers["X-Total-Count"] == "37"
    assert response.headers["X-Page"] == "2"
    assert response.headers["X-Page-Size"] == "10"
    assert window.envelope(["a"], 37) == {"items": ["a"], "total": 37, "page": 2, "page_size": 10}
