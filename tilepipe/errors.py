"""Error taxonomy for tile acquisition runs."""


class TilePipeError(Exception):
    """Base exception for tilepipe errors."""


class FetchError(TilePipeError):
    """Permanent failure fetching one tile's source bytes."""

    def __init__(self, url: str, message: str = "", status_code: int | None = None):
        self.url = url
        self.status_code = status_code
        detail = f"HTTP {status_code}" if status_code is not None else "fetch failed"
        super().__init__(f"{url} -> {detail}{': ' + message if message else ''}")


class TransientFetchError(FetchError):
    """Retryable fetch failure (timeout, 5xx, connection reset)."""


class TileAbsentError(FetchError):
    """The source confirms there is no data for the requested tile."""


class TransformError(TilePipeError):
    """A per-tile transform step could not produce features."""


class MissingDependencyError(TilePipeError):
    """A required external tool is not available."""

    def __init__(self, tool: str, hint: str = ""):
        self.tool = tool
        message = f"required command '{tool}' not found"
        if hint:
            message = f"{message}\n  {hint}"
        super().__init__(message)


class ZeroOutputError(TilePipeError):
    """The run finished without any usable output."""

    def __init__(self, summary):
        self.summary = summary
        super().__init__(
            f"run produced no usable output ({summary.empty} empty, {summary.failed} failed); "
            "check the bounding box and source configuration"
        )
