"""External capabilities used by node handlers."""

from .completion import CompletionClient, GeminiCompletionClient
from .file_extraction import FileExtractor, LocalFileExtractor
from .http_client import ApiCaller, SimulatedApiCaller, HttpxApiCaller, build_api_caller

__all__ = [
    "CompletionClient",
    "GeminiCompletionClient",
    "FileExtractor",
    "LocalFileExtractor",
    "ApiCaller",
    "SimulatedApiCaller",
    "HttpxApiCaller",
    "build_api_caller",
]
