# ABOUTME: Error taxonomy shared by the ingestion core and the web layer.
# ABOUTME: Each error carries the HTTP status it maps to at the API boundary.


class FeedTuneError(Exception):
    """Base class for every error that may cross the service boundary."""

    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class FetchFailed(FeedTuneError):
    """Network-level failure or a non-2xx response."""

    status_code = 502


class FetchTimeout(FeedTuneError):
    status_code = 504


class ParseFailed(FeedTuneError):
    """Malformed feed document. The message is the parser's own."""

    status_code = 422


class UpstreamError(FeedTuneError):
    """Provider-reported API error, message preserved verbatim."""

    status_code = 502


class MissingCredential(FeedTuneError):
    status_code = 500


class Unauthorized(FeedTuneError):
    status_code = 401


class NotFound(FeedTuneError):
    status_code = 404


class Conflict(FeedTuneError):
    status_code = 409


class InvalidInput(FeedTuneError):
    status_code = 400


class StorageError(FeedTuneError):
    status_code = 500
