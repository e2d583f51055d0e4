"""URL downloader for extension assets"""

import logging
import time
from pathlib import Path
from typing import Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from fuseml.core.extensions.exceptions import FetchError

logger = logging.getLogger(__name__)

# Download limits
DEFAULT_MAX_SIZE = 50 * 1024 * 1024  # 50MB
DEFAULT_TIMEOUT = 300  # 5 minutes
CHUNK_SIZE = 8192  # 8KB chunks

# urllib3 reports every retried request on these loggers
RETRY_LOGGERS = ("urllib3.connectionpool", "urllib3.util.retry")


def configure_retry_logging(debug: bool = False) -> None:
    """Show retry attempts only in debug mode; final failures are reported by the caller"""
    for name in RETRY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if debug else logging.ERROR)


def build_retry_session(
    max_retries: int,
    allowed_methods=("GET", "HEAD"),
    debug: bool = False
) -> requests.Session:
    """
    Create a requests session retrying transient transport failures

    Connection errors are retried for every method; read errors and
    gateway errors only for the methods listed in allowed_methods.
    Retry attempts are logged only when debug is set.
    """
    configure_retry_logging(debug)
    session = requests.Session()

    retry_strategy = Retry(
        total=max_retries,
        backoff_factor=1,
        status_forcelist=[429, 500, 502, 503, 504],
        allowed_methods=frozenset(allowed_methods),
        raise_on_status=False
    )

    adapter = HTTPAdapter(max_retries=retry_strategy)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


class URLDownloader:
    """Downloader for extension assets (description files, manifests, charts, scripts)"""

    def __init__(
        self,
        max_retries: int = 3,
        timeout: int = DEFAULT_TIMEOUT,
        max_size: int = DEFAULT_MAX_SIZE,
        session: Optional[requests.Session] = None,
        debug: bool = False
    ):
        """
        Initialize downloader

        Args:
            max_retries: Maximum number of retry attempts
            timeout: Request timeout in seconds
            max_size: Maximum file size in bytes
            session: Preconfigured session (a retrying one is built otherwise)
            debug: Log retry attempts
        """
        self.timeout = timeout
        self.max_size = max_size
        self.session = session or build_retry_session(max_retries, debug=debug)

    def download(self, url: str, target_path: Path) -> Path:
        """
        Download file from URL

        Args:
            url: URL to download from
            target_path: Target file path

        Returns:
            target_path

        Raises:
            FetchError: If download fails
        """
        logger.info(f"Downloading {url}")

        target_path.parent.mkdir(parents=True, exist_ok=True)

        # Use temporary file during download
        temp_path = target_path.with_suffix(target_path.suffix + '.tmp')

        try:
            response = self.session.get(url, stream=True, timeout=self.timeout)
            with response:
                if response.status_code != 200:
                    raise FetchError(
                        f"Failed to download {url}: server returned {response.status_code}"
                    )

                content_length = response.headers.get('Content-Length')
                if content_length and int(content_length) > self.max_size:
                    raise FetchError(
                        f"File too large: {int(content_length) / 1024 / 1024:.2f}MB "
                        f"(max: {self.max_size / 1024 / 1024}MB)"
                    )

                downloaded_bytes = 0
                start_time = time.time()

                with open(temp_path, 'wb') as f:
                    for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                        if chunk:  # Filter out keep-alive chunks
                            f.write(chunk)
                            downloaded_bytes += len(chunk)

                            # Enforce size limit even without Content-Length
                            if downloaded_bytes > self.max_size:
                                raise FetchError(
                                    f"Download exceeded size limit: {downloaded_bytes / 1024 / 1024:.2f}MB"
                                )

            elapsed_time = time.time() - start_time
            logger.debug(f"Downloaded {downloaded_bytes / 1024:.2f}KB in {elapsed_time:.2f}s")

            temp_path.replace(target_path)
            return target_path

        except requests.RequestException as e:
            raise FetchError(f"Failed to download {url}: {e}") from e

        except OSError as e:
            raise FetchError(f"Failed to save {url} to {target_path}: {e}") from e

        finally:
            # Clean up temporary file
            if temp_path.exists():
                try:
                    temp_path.unlink()
                except OSError as e:
                    logger.warning(f"Failed to clean up temporary file {temp_path}: {e}")

    def close(self):
        """Close the session"""
        self.session.close()

    def __enter__(self):
        """Context manager entry"""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit"""
        self.close()
