"""Error taxonomy shared by the crawler, the downloader and the HTTP client."""


class ScraperError(Exception):
    """Base class for every error raised by comic_scraper."""


class NetworkError(ScraperError):
    def __init__(self, cause: BaseException):
        self.cause = cause
        super().__init__(f"Network error: {cause}")


class BadStatus(ScraperError):
    def __init__(self, code: int):
        self.code = code
        super().__init__(f"Unexpected HTTP status {code}")


class ParseError(ScraperError):
    def __init__(self, message: str = "Could not decode or parse the document"):
        super().__init__(message)


class InvalidBaseURL(ScraperError):
    def __init__(self, url: str = ""):
        self.url = url
        super().__init__(f"Invalid base URL: {url!r}")


class MissingSelector(ScraperError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Missing selector: {name}")


class Cancelled(ScraperError):
    def __init__(self, message: str = "Operation cancelled"):
        super().__init__(message)


class SourceNotFound(ScraperError, LookupError):
    def __init__(self, source_id: int):
        self.source_id = source_id
        super().__init__(f"No source with id {source_id}")


class ProfileError(ScraperError, ValueError):
    """Raised when an exported profile document fails validation."""
