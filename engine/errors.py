"""Exception types raised at collaborator boundaries."""


class ScenarrError(Exception):
    """Base class for errors raised by scenarr components."""


class IndexerError(ScenarrError):
    """Indexer request failed (connectivity, HTTP status or payload)."""


class TorrentClientError(ScenarrError):
    """Torrent client rejected a request or could not be reached."""


class MetadataProviderError(ScenarrError):
    """Metadata provider request failed."""


class ModelLoadError(ScenarrError):
    """The learned scorer model could not be loaded."""


class CompletionError(ScenarrError):
    """Completion handoff failed for a finished download."""
