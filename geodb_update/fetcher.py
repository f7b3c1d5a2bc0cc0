"""
Remote Edition Fetcher

Talks to the update service: asks for the current metadata of an edition and,
when its MD5 differs from the local one, streams the new database out of the
downloaded tar.gz archive without buffering it in memory.
"""

import tarfile
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Dict, Optional

import requests

from . import DATABASE_FILE_SUFFIX, DEFAULT_HTTP_TIMEOUT, DEFAULT_UPDATE_URL, __version__
from .errors import FatalError, TransientError
from .models import Metadata, ReadResult

logger = logging.getLogger(__name__)

USER_AGENT = f"geodb-update/{__version__}"
METADATA_PATH = "/geoip/updates/metadata"
DOWNLOAD_PATH = "/geoip/databases/{edition_id}/download"


class Fetcher(ABC):
    """Interface for retrieving editions from the update service."""

    @abstractmethod
    def check(self, edition_id: str, known_hash: str) -> Optional[ReadResult]:
        """
        Fetch an edition if it differs from `known_hash`.

        Returns:
            None when the edition is not modified, otherwise a ReadResult whose
            stream the caller must consume and close

        Raises:
            TransientError: For failures that may succeed on retry
            FatalError: For failures retrying cannot fix
        """

    def close(self):
        """Release connections held by the fetcher."""


class ArchiveMemberStream:
    """Read-only stream over the database member of a downloaded archive."""

    def __init__(self, response: requests.Response, archive: tarfile.TarFile, member):
        self._response = response
        self._archive = archive
        self._member = member
        self.name = member.name

    def read(self, size: int = -1) -> bytes:
        return self._member.read(size)

    def close(self):
        try:
            self._member.close()
            self._archive.close()
        finally:
            self._response.close()


class HTTPFetcher(Fetcher):
    """Fetches editions over the HTTP update protocol using requests."""

    def __init__(self, account_id: int, license_key: str, url: str = DEFAULT_UPDATE_URL,
                 proxy: Optional[str] = None, timeout: int = DEFAULT_HTTP_TIMEOUT,
                 session: Optional[requests.Session] = None):
        """
        Initialize the fetcher.

        Args:
            account_id: Account ID used for basic authentication
            license_key: License key used for basic authentication
            url: Base URL of the update service
            proxy: Optional proxy URL applied to http and https requests
            timeout: Connect and read timeout in seconds
            session: Optional pre-configured session
        """
        self.url = url.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.auth = (str(account_id), license_key)
        self.session.headers['User-Agent'] = USER_AGENT
        if proxy:
            self.session.proxies.update({'http': proxy, 'https': proxy})

    def close(self):
        self.session.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def check(self, edition_id: str, known_hash: str) -> Optional[ReadResult]:
        metadata = self.get_metadata(edition_id)

        if metadata.md5.lower() == known_hash.lower():
            logger.debug(f"No new updates available for {edition_id}")
            return None

        logger.debug(f"Update available for {edition_id}: {known_hash} -> {metadata.md5}")
        return self.download(metadata, known_hash)

    def get_metadata(self, edition_id: str) -> Metadata:
        """
        Get the announced date and MD5 of an edition.

        Raises:
            TransientError: On connection failures or server errors
            FatalError: On rejected credentials or malformed metadata
        """
        url = self.url + METADATA_PATH
        logger.debug(f"Requesting metadata for {edition_id}: {url}")

        response = self._request(url, edition_id, params={'edition_id': edition_id})
        try:
            try:
                body = response.json()
            except ValueError as e:
                raise FatalError(f"error decoding metadata response: {e}", edition_id=edition_id) from e
        finally:
            response.close()

        return self._parse_metadata(body, edition_id)

    @staticmethod
    def _parse_metadata(body: Any, edition_id: str) -> Metadata:
        databases = body.get('databases') if isinstance(body, dict) else None
        if not isinstance(databases, list):
            raise FatalError("metadata response has no databases list", edition_id=edition_id)

        for entry in databases:
            if not isinstance(entry, dict) or entry.get('edition_id') != edition_id:
                continue
            date, md5 = entry.get('date'), entry.get('md5')
            if not isinstance(date, str) or not isinstance(md5, str) or not md5:
                raise FatalError(f"incomplete metadata entry: {entry}", edition_id=edition_id)
            return Metadata(edition_id=edition_id, date=date, md5=md5)

        raise FatalError("edition not found in metadata response", edition_id=edition_id)

    def download(self, metadata: Metadata, known_hash: str) -> ReadResult:
        """
        Start downloading an edition and expose its database as a stream.

        Args:
            metadata: Metadata previously returned for the edition
            known_hash: MD5 of the local copy being replaced

        Returns:
            ReadResult: Streaming result, to be consumed and closed by the caller
        """
        edition_id = metadata.edition_id
        url = self.url + DOWNLOAD_PATH.format(edition_id=edition_id)
        params = {'date': metadata.date.replace('-', ''), 'suffix': 'tar.gz'}
        logger.debug(f"Downloading {edition_id}: {url}")

        response = self._request(url, edition_id, params=params, stream=True)
        try:
            modified_at = self._parse_last_modified(response)
            archive = tarfile.open(fileobj=response.raw, mode='r|gz')
            member_stream = self._find_database(archive, edition_id)
        except FatalError:
            response.close()
            raise
        except Exception as e:
            # Truncated or corrupted transfers surface as tar, gzip or urllib3 errors
            response.close()
            raise TransientError(f"error reading downloaded archive: {e}", edition_id=edition_id) from e

        return ReadResult(
            edition_id=edition_id,
            reader=ArchiveMemberStream(response, archive, member_stream),
            old_hash=known_hash,
            new_hash=metadata.md5,
            modified_at=modified_at
        )

    @staticmethod
    def _find_database(archive: tarfile.TarFile, edition_id: str):
        for member in archive:
            if member.isfile() and member.name.endswith(DATABASE_FILE_SUFFIX):
                logger.debug(f"Found database {member.name} in archive for {edition_id}")
                return archive.extractfile(member)

        archive.close()
        raise FatalError(f"archive does not contain a {DATABASE_FILE_SUFFIX} file", edition_id=edition_id)

    @staticmethod
    def _parse_last_modified(response: requests.Response) -> datetime:
        header = response.headers.get('Last-Modified')
        if header:
            try:
                modified_at = parsedate_to_datetime(header)
            except (TypeError, ValueError):
                logger.warning(f"Ignoring unparsable Last-Modified header: {header}")
            else:
                if modified_at.tzinfo is None:
                    modified_at = modified_at.replace(tzinfo=timezone.utc)
                return modified_at.astimezone(timezone.utc)

        return datetime.now(timezone.utc)

    def _request(self, url: str, edition_id: str, params: Dict[str, str],
                 stream: bool = False) -> requests.Response:
        """Perform a GET request and map failures onto the error taxonomy."""
        try:
            response = self.session.get(url, params=params, stream=stream, timeout=self.timeout)
        except (requests.ConnectionError, requests.Timeout) as e:
            raise TransientError(f"error connecting to {url}: {e}", edition_id=edition_id) from e
        except requests.RequestException as e:
            raise FatalError(f"error requesting {url}: {e}", edition_id=edition_id) from e

        if response.status_code == 200:
            return response

        detail = self._error_detail(response)
        response.close()

        status = response.status_code
        message = f"unexpected HTTP status code {status} from {url}: {detail}"
        if status >= 500 or status == 429:
            raise TransientError(message, edition_id=edition_id, status_code=status)
        raise FatalError(message, edition_id=edition_id, status_code=status)

    @staticmethod
    def _error_detail(response: requests.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text.strip()[:200] or response.reason or ""

        if isinstance(body, dict) and body.get('error'):
            code = body.get('code')
            return f"{code}: {body['error']}" if code else str(body['error'])
        return str(body)[:200]
