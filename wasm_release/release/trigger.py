"""Release trigger detection.

A pipeline run publishes only when it was triggered by pushing a tag of
the form ``v<major>.<minor>.<patch>`` (optionally with a ``-prerelease``
suffix). Everything else, branch pushes and pull requests included, is a
plain build. A pushed tag that looks like a version (``v*.*.*``) but does
not parse as one is an error, never a plain build.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from fnmatch import fnmatchcase

from wasm_release.errors import MALFORMED_TAG, PublishError, VersionMismatchError

TAG_REF_PREFIX = "refs/tags/"

# Refs the release workflow fires on
RELEASE_REF_GLOB = "refs/tags/v*.*.*"

RELEASE_TAG_PATTERN = re.compile(
    r"v(?P<version>(?:0|[1-9]\d*)\.(?:0|[1-9]\d*)\.(?:0|[1-9]\d*)"
    r"(?P<prerelease>-[0-9A-Za-z][0-9A-Za-z.\-]*)?)"
)


@dataclass(frozen=True)
class ReleaseTrigger:
    """A version-tag push.

    Attributes:
        ref: Full git ref, e.g. ``refs/tags/v0.1.0``.
        tag: Tag name, e.g. ``v0.1.0``.
        version: Version component, e.g. ``0.1.0``.
        prerelease: True for tags with a prerelease suffix.
    """

    ref: str
    tag: str
    version: str
    prerelease: bool = False


def parse_trigger(ref: str | None) -> ReleaseTrigger | None:
    """Return the release trigger for a git ref, or None for plain builds.

    Args:
        ref: Git ref of the triggering event (``GITHUB_REF``), may be None.

    Returns:
        ReleaseTrigger when ref is a matching tag push, else None.

    Raises:
        PublishError: If ref is a ``v*.*.*`` tag push that is not a valid
            release version (e.g. ``v01.0.0`` or ``v0.1.0+build.1``).
    """
    if not ref or not ref.startswith(TAG_REF_PREFIX):
        return None

    tag = ref[len(TAG_REF_PREFIX) :]
    match = RELEASE_TAG_PATTERN.fullmatch(tag)
    if match is None:
        if fnmatchcase(ref, RELEASE_REF_GLOB):
            raise PublishError(
                f"Tag {tag} is not a valid release version (vMAJOR.MINOR.PATCH)",
                code=MALFORMED_TAG,
            )
        return None

    return ReleaseTrigger(
        ref=ref,
        tag=tag,
        version=match.group("version"),
        prerelease=match.group("prerelease") is not None,
    )


def check_version_match(trigger: ReleaseTrigger, manifest_version: str) -> None:
    """Require the tag version to equal the manifest version.

    Args:
        trigger: Parsed release trigger.
        manifest_version: Version from Cargo.toml.

    Raises:
        VersionMismatchError: If they differ.
    """
    if trigger.version != manifest_version:
        raise VersionMismatchError(trigger.version, manifest_version)


__all__ = [
    "RELEASE_REF_GLOB",
    "RELEASE_TAG_PATTERN",
    "TAG_REF_PREFIX",
    "ReleaseTrigger",
    "check_version_match",
    "parse_trigger",
]
