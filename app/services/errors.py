from __future__ import annotations


class BookmarkError(Exception):
    status_code = 500
    default_message = "Something went wrong"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidRequest(BookmarkError):
    status_code = 400
    default_message = "Invalid request"


class InvalidURL(InvalidRequest):
    default_message = "Invalid URL (must start with http:// or https://)"


class DuplicateURL(BookmarkError):
    status_code = 409
    default_message = "This URL is already bookmarked"


class NotFound(BookmarkError):
    status_code = 404
    default_message = "Bookmark not found"


class Unauthorized(BookmarkError):
    status_code = 401
    default_message = "authentication required"


class Unavailable(BookmarkError):
    status_code = 503
    default_message = "Service temporarily unavailable, please try again"


_ERRORS_BY_STATUS = {
    400: InvalidRequest,
    401: Unauthorized,
    404: NotFound,
    409: DuplicateURL,
}


def error_for_status(status_code: int, message: str | None = None) -> BookmarkError:
    error_cls = _ERRORS_BY_STATUS.get(status_code)
    if error_cls is None:
        return Unavailable(message)
    return error_cls(message)
