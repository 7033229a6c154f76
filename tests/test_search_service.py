from app.services.search import filter_bookmarks, matches_query


def _bookmark(title: str, url: str):
    return {"id": title.lower(), "title": title, "url": url}


def test_search_filters_irrelevant_items():
    bookmarks = [
        _bookmark("Python docs", "https://docs.python.org"),
        _bookmark("Gardening tips", "https://garden.example"),
        _bookmark("Travel planning", "https://travel.example"),
    ]

    results = filter_bookmarks(bookmarks, "python")

    assert [row["title"] for row in results] == ["Python docs"]


def test_search_matches_url_text():
    bookmarks = [
        _bookmark("Weekly roundup", "https://news.ycombinator.com"),
        _bookmark("Other", "https://other.example"),
    ]

    assert filter_bookmarks(bookmarks, "YCOMBINATOR") == [bookmarks[0]]


def test_search_keeps_list_order():
    bookmarks = [
        _bookmark("B docs", "https://b.example"),
        _bookmark("A docs", "https://a.example"),
    ]

    assert filter_bookmarks(bookmarks, "docs") == bookmarks


def test_blank_query_keeps_everything():
    bookmarks = [_bookmark("One", "https://one.example")]

    assert filter_bookmarks(bookmarks, None) == bookmarks
    assert filter_bookmarks(bookmarks, "   ") == bookmarks
    assert matches_query({"title": None, "url": None}, "") is True
    assert matches_query({"title": None, "url": None}, "x") is False
