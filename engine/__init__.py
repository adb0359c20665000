from .errors import (
    CompletionError,
    IndexerError,
    MetadataProviderError,
    ModelLoadError,
    ScenarrError,
    TorrentClientError,
)
from .paths import EnginePaths, build_engine_paths

__all__ = [
    "CompletionError",
    "EnginePaths",
    "IndexerError",
    "MetadataProviderError",
    "ModelLoadError",
    "ScenarrError",
    "TorrentClientError",
    "build_engine_paths",
]
