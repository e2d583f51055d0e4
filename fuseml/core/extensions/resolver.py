"""
Resolution of the files and directories referenced by an extension description

An extension lives under <repository>/<extension name>/, where the repository
is either a local directory or an http(s) URL. References found in the
description are resolved in this order:

1. absolute local path      -> used as is
2. absolute URL             -> downloaded into the scratch directory
3. relative, URL repository -> <repository>/<name>/<reference>, downloaded
4. relative, local repository -> <repository>/<name>/<reference>, used in place

Directories (kustomize overlays) are never downloaded: kubectl fetches them
itself, so they stay URLs or local paths.
"""

import logging
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path, PurePosixPath
from typing import Iterator, Optional
from urllib.parse import ParseResult, urljoin, urlparse, urlunparse

from fuseml.core.extensions.downloader import URLDownloader
from fuseml.core.extensions.exceptions import FetchError

logger = logging.getLogger(__name__)

RAW_CONTENT_HOST = "raw.githubusercontent.com"
REPOSITORY_HOST = "github.com"


def _parse_url(value: str) -> ParseResult:
    try:
        parsed = urlparse(value)
        # accessing port validates it
        parsed.port
    except ValueError as e:
        raise FetchError(f"Invalid URL '{value}': {e}") from e
    return parsed


def is_url(value: str) -> bool:
    """True for absolute URLs with a scheme and a host"""
    parsed = _parse_url(value)
    return bool(parsed.scheme) and bool(parsed.netloc)


def join_url(base: str, *parts: str) -> str:
    """Append path parts to a base URL: join_url('http://h/repo', 'ext', 'a.yaml') -> 'http://h/repo/ext/a.yaml'"""
    url = base.rstrip("/") + "/"
    for part in parts[:-1]:
        url = urljoin(url, part.strip("/") + "/")
    if parts:
        url = urljoin(url, parts[-1].lstrip("/"))
    return url


def kustomize_url(url: str) -> str:
    """
    Rewrite a raw content URL into a reference kustomize understands

        https://raw.githubusercontent.com/<user>/<repo>/<branch>/<path>
            -> https://github.com/<user>/<repo>/<path>?ref=<branch>

    Any other URL is returned unchanged, so rewriting is idempotent.

    Raises:
        FetchError: Raw content URL without user/repo/branch
    """
    parsed = _parse_url(url)
    if not parsed.scheme or parsed.hostname != RAW_CONTENT_HOST:
        return url

    tokens = parsed.path.split("/")
    # ['', user, repo, branch, path...]
    if len(tokens) < 4 or not all(tokens[1:4]):
        raise FetchError(f"Malformed raw content URL (expected /<user>/<repo>/<branch>/<path>): {url}")

    branch = tokens[3]
    path = "/".join(tokens[:3] + tokens[4:])
    return urlunparse(parsed._replace(netloc=REPOSITORY_HOST, path=path, query=f"ref={branch}"))


class AssetResolver:
    """Resolves references from an extension description into fetchable locations"""

    def __init__(
        self,
        repository: str,
        extension_name: str,
        downloader: Optional[URLDownloader] = None,
        scratch_prefix: str = "fuseml-extension"
    ):
        """
        Initialize resolver

        Args:
            repository: Extension repository (local directory or http(s) URL)
            extension_name: Name of the extension subdirectory
            downloader: Downloader used for remote assets
            scratch_prefix: Prefix of temporary directories

        Raises:
            FetchError: If the repository is neither URL nor a directory
        """
        self.extension_name = extension_name
        self.downloader = downloader or URLDownloader()
        self.scratch_prefix = scratch_prefix

        if is_url(repository):
            if _parse_url(repository).scheme not in ("http", "https"):
                raise FetchError(f"Invalid repository URL scheme: {repository}. Only http/https allowed.")
            self.repository = repository.rstrip("/")
            self.is_remote = True
        else:
            local = Path(repository).expanduser()
            if not local.exists():
                raise FetchError(f"Extension repository not found: {repository}")
            if not local.is_dir():
                raise FetchError(
                    f"Provided path to extension repository is neither URL nor a directory: {repository}"
                )
            self.repository = str(local.resolve())
            self.is_remote = False

    @property
    def extension_location(self) -> str:
        """<repository>/<extension name>"""
        if self.is_remote:
            return join_url(self.repository, self.extension_name)
        return str(Path(self.repository) / self.extension_name)

    @contextmanager
    def scratch_dir(self) -> Iterator[Path]:
        """Temporary directory removed on every exit path"""
        with tempfile.TemporaryDirectory(prefix=self.scratch_prefix) as tmp_dir:
            yield Path(tmp_dir)

    def fetch_file(self, reference: str, scratch_dir: Path) -> Path:
        """
        Return a local path for a file reference, downloading remote files

        Args:
            reference: Path or URL from the description
            scratch_dir: Directory receiving downloaded copies

        Returns:
            Local path of the file

        Raises:
            FetchError: Malformed URL, failed download or missing local file
        """
        if not reference:
            raise FetchError("Empty file reference")

        if os.path.isabs(reference):
            return self._existing_file(Path(reference), reference)

        if is_url(reference):
            return self._download(reference, scratch_dir)

        if self.is_remote:
            return self._download(join_url(self.repository, self.extension_name, reference), scratch_dir)

        return self._existing_file(Path(self.repository) / self.extension_name / reference, reference)

    def directory_path(self, reference: str) -> str:
        """
        Return the location of a directory reference without fetching it

        Raises:
            FetchError: Malformed URL or missing local directory
        """
        if not reference:
            raise FetchError("Empty directory reference")

        if os.path.isabs(reference):
            return self._existing_dir(Path(reference), reference)

        if is_url(reference):
            return reference

        if self.is_remote:
            return join_url(self.repository, self.extension_name, reference)

        return self._existing_dir(Path(self.repository) / self.extension_name / reference, reference)

    def kustomize_path(self, reference: str) -> str:
        """Directory location usable by `kubectl --kustomize`"""
        return kustomize_url(self.directory_path(reference))

    def _download(self, url: str, scratch_dir: Path) -> Path:
        parsed = _parse_url(url)
        name = PurePosixPath(parsed.path).name
        if not name:
            raise FetchError(f"URL does not reference a file: {url}")
        return self.downloader.download(url, scratch_dir / name)

    @staticmethod
    def _existing_file(path: Path, reference: str) -> Path:
        if not path.is_file():
            raise FetchError(f"File {reference} not found at {path}")
        return path

    @staticmethod
    def _existing_dir(path: Path, reference: str) -> str:
        if not path.is_dir():
            raise FetchError(f"Directory {reference} not found at {path}")
        return str(path)
