from __future__ import annotations


def _safe(value) -> str:
    return (value or "").strip() if isinstance(value, str) else ""


def matches_query(record: dict, query: str) -> bool:
    q = query.strip().lower()
    if not q:
        return True
    title_l = _safe(record.get("title")).lower()
    url_l = _safe(record.get("url")).lower()
    return q in title_l or q in url_l


def filter_bookmarks(records, query: str | None) -> list[dict]:
    """Ordered sub-sequence of ``records`` whose title or url contains ``query``.

    Case-insensitive substring match on the trimmed query; an empty query
    keeps every record.
    """
    if not query or not query.strip():
        return list(records)
    return [record for record in records if matches_query(record, query)]
