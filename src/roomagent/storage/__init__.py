"""File/content storage behind ``share:/path`` locators."""

from roomagent.storage.files import (
    FileStat,
    LocalContentStore,
    SearchMatch,
    SearchMode,
    StoredFile,
    WriteMode,
    guess_content_type,
    parse_locator,
    parse_shares,
)

__all__ = [
    "FileStat",
    "LocalContentStore",
    "SearchMatch",
    "SearchMode",
    "StoredFile",
    "WriteMode",
    "guess_content_type",
    "parse_locator",
    "parse_shares",
]
