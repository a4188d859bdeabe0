"""Release publishing module.

This module handles:
- Detecting version-tag triggers and checking them against the manifest
- Creating GitHub Releases and attaching package archives
"""

from wasm_release.release.publisher import (
    GitHubReleaseClient,
    PublishResult,
    publish_release,
    publish_tagged_archives,
    select_archives,
)
from wasm_release.release.trigger import (
    ReleaseTrigger,
    check_version_match,
    parse_trigger,
)

__all__ = [
    "GitHubReleaseClient",
    "PublishResult",
    "ReleaseTrigger",
    "check_version_match",
    "parse_trigger",
    "publish_release",
    "publish_tagged_archives",
    "select_archives",
]
