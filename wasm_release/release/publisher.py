"""Release publisher.

This module handles:
- Selecting the archives to attach from the final artifact layer
- Finding or creating the one GitHub Release for a version tag
- Uploading archives as release assets, skipping ones already attached

Releases are append-only: an asset that is already attached with the same
content is skipped, and an asset with the same name but different content
is a conflict rather than something to overwrite. Re-running a publish for
the same tag is therefore safe.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path, PurePath
from typing import TYPE_CHECKING, Any

import httpx

from wasm_release.config import DEFAULT_GITHUB_API_URL
from wasm_release.errors import (
    NO_ARCHIVES,
    VERSION_MISMATCH,
    PublishAuthError,
    PublishError,
    PublishTransientError,
    ReleaseAssetConflictError,
)
from wasm_release.release.trigger import ReleaseTrigger, check_version_match
from wasm_release.stages.extractor import compute_file_hash

if TYPE_CHECKING:
    from wasm_release.config import Settings
    from wasm_release.manifest.schema import CrateManifest

logger = logging.getLogger(__name__)

GITHUB_API_VERSION = "2022-11-28"
ASSET_CONTENT_TYPE = "application/gzip"
ASSETS_PER_PAGE = 100


@dataclass
class PublishResult:
    """Result of publishing archives to a release.

    Attributes:
        tag: Release tag.
        release_id: GitHub release id.
        html_url: Release page URL.
        created: True if the release was created by this run.
        uploaded: Asset names uploaded by this run.
        skipped: Asset names that were already attached with the same content.
    """

    tag: str
    release_id: int
    html_url: str | None = None
    created: bool = False
    uploaded: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


class GitHubReleaseClient:
    """Minimal GitHub Releases REST client.

    Maps transport failures, rate limiting and 5xx responses to
    PublishTransientError and rejected credentials to PublishAuthError.
    """

    def __init__(
        self,
        token: str,
        repository: str,
        api_url: str = DEFAULT_GITHUB_API_URL,
        timeout: float = 60.0,
        client: httpx.Client | None = None,
    ) -> None:
        self.repository = repository
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._own_client = client is None
        self._client = client or httpx.Client(follow_redirects=True)
        self._headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": GITHUB_API_VERSION,
        }

    def close(self) -> None:
        if self._own_client:
            self._client.close()

    def __enter__(self) -> GitHubReleaseClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _repo_url(self, path: str) -> str:
        return f"{self.api_url}/repos/{self.repository}{path}"

    def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send a request and map failures that are not call-specific.

        Returns the response for 2xx and for 4xx statuses other than
        401/403/429, which callers interpret themselves.
        """
        headers = {**self._headers, **kwargs.pop("headers", {})}
        try:
            response = self._client.request(
                method, url, headers=headers, timeout=self.timeout, **kwargs
            )
        except httpx.TimeoutException as e:
            raise PublishTransientError(f"Timeout calling {url}") from e
        except httpx.RequestError as e:
            raise PublishTransientError(f"Network error calling {url}: {e}") from e

        status = response.status_code
        if status >= 500:
            raise PublishTransientError(
                f"{method} {url} failed with HTTP {status}"
            )
        if status == 429 or (
            status == 403 and response.headers.get("x-ratelimit-remaining") == "0"
        ):
            raise PublishTransientError(f"Rate limited calling {url}")
        if status in (401, 403):
            raise PublishAuthError(
                f"Release endpoint rejected the credentials (HTTP {status})"
            )
        return response

    @staticmethod
    def _error(response: httpx.Response, action: str) -> PublishError:
        try:
            detail = response.json().get("message", "")
        except ValueError:
            detail = response.text
        return PublishError(
            f"Failed to {action}: HTTP {response.status_code} {detail}".rstrip(),
            code="http_error",
        )

    def get_release_by_tag(self, tag: str) -> dict[str, Any] | None:
        """Return the release for a tag, or None if there is none."""
        response = self._request("GET", self._repo_url(f"/releases/tags/{tag}"))
        if response.status_code == 404:
            return None
        if not response.is_success:
            raise self._error(response, f"look up release {tag}")
        return response.json()

    def create_release(
        self,
        tag: str,
        name: str | None = None,
        prerelease: bool = False,
    ) -> tuple[dict[str, Any], bool]:
        """Create the release for a tag.

        A concurrent run may create the same release first; GitHub then
        answers 422 ``already_exists`` and the existing release is returned.

        Returns:
            Tuple of (release, created_by_this_call).
        """
        response = self._request(
            "POST",
            self._repo_url("/releases"),
            json={
                "tag_name": tag,
                "name": name or tag,
                "draft": False,
                "prerelease": prerelease,
            },
        )
        if response.status_code == 201:
            return response.json(), True

        if response.status_code == 422 and _is_already_exists(response):
            logger.info("Release %s already exists, appending to it", tag)
            release = self.get_release_by_tag(tag)
            if release is None:
                raise PublishError(
                    f"Release {tag} reported as existing but cannot be fetched",
                    code="http_error",
                )
            return release, False

        raise self._error(response, f"create release {tag}")

    def list_assets(self, release_id: int) -> list[dict[str, Any]]:
        """Return every asset attached to a release."""
        assets: list[dict[str, Any]] = []
        url: str | None = self._repo_url(f"/releases/{release_id}/assets")
        params: dict[str, Any] | None = {"per_page": ASSETS_PER_PAGE}
        while url:
            response = self._request("GET", url, params=params)
            if not response.is_success:
                raise self._error(response, f"list assets of release {release_id}")
            assets.extend(response.json())
            url = response.links.get("next", {}).get("url")
            params = None
        return assets

    def upload_asset(
        self,
        release: dict[str, Any],
        path: Path,
        content_type: str = ASSET_CONTENT_TYPE,
    ) -> dict[str, Any] | None:
        """Upload a file as a release asset.

        Args:
            release: Release object as returned by the API.
            path: File to upload; its name becomes the asset name.
            content_type: Asset media type.

        Returns:
            The created asset object, or None when an asset with the same
            name was attached in the meantime (422 ``already_exists``).
        """
        # upload_url is a URI template: .../assets{?name,label}
        upload_url = release["upload_url"].split("{", 1)[0]
        response = self._request(
            "POST",
            upload_url,
            params={"name": path.name},
            content=path.read_bytes(),
            headers={"Content-Type": content_type},
        )
        if response.status_code == 422 and _is_already_exists(response):
            return None
        if not response.is_success:
            raise self._error(response, f"upload {path.name}")
        return response.json()


def _is_already_exists(response: httpx.Response) -> bool:
    try:
        errors = response.json().get("errors") or []
    except ValueError:
        return False
    return any(
        isinstance(error, dict) and error.get("code") == "already_exists"
        for error in errors
    )


def _find_asset(assets: list[dict[str, Any]], name: str) -> dict[str, Any] | None:
    for asset in assets:
        if asset.get("name") == name:
            return asset
    return None


def same_content(asset: dict[str, Any], path: Path) -> bool:
    """Check whether an attached asset has the same content as a local file.

    Compares the SHA-256 digest when GitHub reports one and the size otherwise.
    """
    digest = asset.get("digest")
    if isinstance(digest, str) and digest.startswith("sha256:"):
        return digest.removeprefix("sha256:") == compute_file_hash(path)
    return asset.get("size") == path.stat().st_size


def select_archives(selector: str, base_dir: Path, prefix: str) -> list[Path]:
    """Resolve the archive selector against the final layer.

    Args:
        selector: Filename glob; relative selectors resolve against base_dir.
        base_dir: Final layer directory.
        prefix: ``<package>-`` prefix the selector's filename must start with.

    Returns:
        Sorted list of matching files.

    Raises:
        PublishError: If the selector is too broad or matches nothing.
    """
    pattern = PurePath(selector)
    if not pattern.name.startswith(prefix):
        raise PublishError(
            f"Selector {selector!r} must select files starting with {prefix!r}",
            code="invalid_selector",
        )

    if pattern.is_absolute():
        root, glob = Path(pattern.parent), pattern.name
    else:
        root, glob = base_dir, selector

    matches = sorted(p for p in root.glob(glob) if p.is_file())
    if not matches:
        raise PublishError(
            f"Selector {selector!r} matched no archives in {root}",
            code=NO_ARCHIVES,
        )
    return matches


def publish_release(
    trigger: ReleaseTrigger,
    archives: list[Path],
    token: str | None,
    repository: str | None,
    api_url: str = DEFAULT_GITHUB_API_URL,
    timeout: float = 60.0,
    client: httpx.Client | None = None,
) -> PublishResult:
    """Attach archives to the release for a tag, creating it if needed.

    Args:
        trigger: Release trigger (tag).
        archives: Files to attach.
        token: API token.
        repository: ``owner/name``.
        api_url: GitHub REST API base URL.
        timeout: Per-request timeout in seconds.
        client: Optional HTTPX client.

    Returns:
        PublishResult.

    Raises:
        PublishAuthError: If no token is configured or it is rejected.
        PublishTransientError: On network failures, rate limiting or 5xx.
        ReleaseAssetConflictError: If an asset name is taken by other content.
        PublishError: On any other failure.
    """
    if not token:
        raise PublishAuthError(
            "No release token configured (set GITHUB_TOKEN)",
            code="missing_credentials",
        )
    if not repository:
        raise PublishError(
            "No repository configured (set GITHUB_REPOSITORY)",
            code="missing_repository",
        )

    with GitHubReleaseClient(
        token, repository, api_url=api_url, timeout=timeout, client=client
    ) as api:
        release = api.get_release_by_tag(trigger.tag)
        created = False
        if release is None:
            release, created = api.create_release(
                trigger.tag, prerelease=trigger.prerelease
            )
            if created:
                logger.info("Created release %s", trigger.tag)

        result = PublishResult(
            tag=trigger.tag,
            release_id=release["id"],
            html_url=release.get("html_url"),
            created=created,
        )

        existing = {asset["name"]: asset for asset in api.list_assets(release["id"])}
        for path in archives:
            asset = existing.get(path.name)
            if asset is None:
                if api.upload_asset(release, path) is not None:
                    logger.info("Uploaded %s to release %s", path.name, trigger.tag)
                    result.uploaded.append(path.name)
                    continue
                # Attached by a concurrent run since the listing above
                asset = _find_asset(api.list_assets(release["id"]), path.name)

            if asset is None or not same_content(asset, path):
                raise ReleaseAssetConflictError(path.name, trigger.tag)
            logger.info("Asset %s already attached, skipping", path.name)
            result.skipped.append(path.name)

    return result


def publish_tagged_archives(
    trigger: ReleaseTrigger,
    manifest: CrateManifest,
    output_dir: Path,
    settings: Settings,
    selector: str | None = None,
    scope: str | None = None,
    client: httpx.Client | None = None,
) -> PublishResult:
    """Publish the final layer's archives to the release for a tag.

    Callers decide whether the run was tag-triggered; plain builds never
    get here.

    Args:
        trigger: Release trigger.
        manifest: Crate manifest.
        output_dir: Final layer directory.
        settings: Settings (token, repository, API URL, timeout).
        selector: Archive glob (defaults to ``<package>-*.tgz``).
        scope: npm scope used for the build.
        client: Optional HTTPX client.

    Returns:
        PublishResult.

    Raises:
        VersionMismatchError: If the tag does not match the manifest version.
        PublishError: On selection or publishing failures.
    """
    check_version_match(trigger, manifest.version)

    prefix = manifest.archive_prefix(scope)
    archives = select_archives(selector or f"{prefix}*.tgz", output_dir, prefix)

    expected = manifest.archive_filename(scope)
    for path in archives:
        if path.name != expected:
            raise PublishError(
                f"Archive {path.name} does not match release {trigger.tag} "
                f"(expected {expected})",
                code=VERSION_MISMATCH,
            )

    token = settings.github_token.get_secret_value() if settings.github_token else None
    return publish_release(
        trigger,
        archives,
        token=token,
        repository=settings.github_repository,
        api_url=settings.github_api_url,
        timeout=settings.http_timeout,
        client=client,
    )


__all__ = [
    "ASSET_CONTENT_TYPE",
    "GITHUB_API_VERSION",
    "GitHubReleaseClient",
    "PublishResult",
    "publish_release",
    "publish_tagged_archives",
    "same_content",
    "select_archives",
]
