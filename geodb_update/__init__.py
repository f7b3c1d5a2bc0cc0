"""
GeoIP Database Update System

Keeps local binary database editions in sync with a remote update service.
Each configured edition is checked against the service, downloaded only when
a newer version exists, verified and atomically installed.

Modules:
    config: Configuration file loading and validation
    errors: Error taxonomy shared by all components
    models: Read results, run outcomes and aggregate run results
    retry: Retry budget and backoff decisions
    lock: Process-level mutual exclusion over the database directory
    writer: Hash-verified, atomic local database writer
    fetcher: Remote edition fetcher (HTTP update protocol)
    orchestrator: Parallel per-edition update orchestration
    scheduler: Periodic execution of update runs
"""

from datetime import timedelta

__version__ = "1.0.0"
__author__ = "GeoDB Update Team"

# MD5 reported for an edition that has no local file yet
ZERO_MD5 = "00000000000000000000000000000000"

# Update service configuration
DEFAULT_UPDATE_URL = "https://updates.maxmind.com"
DEFAULT_CONFIG_FILE = "/usr/local/etc/GeoIP.conf"
DEFAULT_DATABASE_DIRECTORY = "/usr/local/share/GeoIP"
DEFAULT_LOCK_FILE_NAME = ".geoipupdate.lock"
DATABASE_FILE_SUFFIX = ".mmdb"

# Update run configuration
DEFAULT_PARALLELISM = 1
DEFAULT_RETRY_FOR = timedelta(minutes=5)
DEFAULT_HTTP_TIMEOUT = 60
