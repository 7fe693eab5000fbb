"""
Backup executor - orchestrates the complete backup workflow.

Workflow:
1. Ensure the remote backup directory exists (PROPFIND, MKCOL if missing)
2. Open the archive in the temp directory
3. Add the source directory tree (if configured)
4. Dump the database and add the dump as sql/<prefix>.sql (if configured)
5. Finalize the archive (close container / gzip tar)
6. Upload the artifact with PUT
7. Cleanup temporary files
"""

import os
import re
import time
import logging
from datetime import datetime
from typing import Optional
from urllib.parse import quote, urlparse

from sqlalchemy import create_engine
from sqlalchemy.engine import URL, Engine, make_url
from sqlalchemy.exc import ArgumentError

from davbackup.config import Config, ConfigurationError
from .archive import (
    ArchiveType,
    ArchiveError,
    artifact_name,
    get_archive_size,
    open_archive,
    require_available,
)
from .dump import SQLDumpGenerator
from .webdav import AUTH_SCHEMES, RemoteProtocolError, WebDAVClient


logger = logging.getLogger(__name__)

_LABEL_SEPARATORS = re.compile(r'[ \t\r\n_]')


class BackupJob:
    """
    One backup run: archive local data and publish it to a WebDAV directory.

    Configure the job with the ``set_*`` methods (each validates immediately
    and returns the job), then call ``execute()`` once.
    """

    def __init__(self, base_url: str, login: str, password: str, auth_scheme: str = 'basic',
                 temp_dir: Optional[str] = None, remote_dir: Optional[str] = None,
                 timeout: Optional[float] = None, session=None):
        """
        Initialize backup job.

        Args:
            base_url: WebDAV root URL
            login: Account login
            password: Account password
            auth_scheme: 'basic' or 'digest'
            temp_dir: Directory for archives and dumps (default: Config.TEMP_DIR)
            remote_dir: Remote directory name (default: Config.REMOTE_DIR)
            timeout: HTTP timeout in seconds (default: Config.REQUEST_TIMEOUT)
            session: Optional requests session for the WebDAV client

        Raises:
            ConfigurationError: If the URL, credentials or auth scheme are invalid
        """
        parsed = urlparse(base_url or '')
        if parsed.scheme not in ('http', 'https') or not parsed.netloc:
            raise ConfigurationError(f"Invalid WebDAV URL: {base_url!r}")

        if not login or not password:
            raise ConfigurationError("WebDAV login and password are required")

        if auth_scheme not in AUTH_SCHEMES:
            raise ConfigurationError(
                f"Invalid auth scheme: {auth_scheme}. "
                f"Valid options: {list(AUTH_SCHEMES.keys())}"
            )

        self.base_url = base_url if base_url.endswith('/') else base_url + '/'
        self.login = login
        self.auth_scheme = auth_scheme
        self.client = WebDAVClient(
            login,
            password,
            auth_scheme=auth_scheme,
            timeout=timeout if timeout is not None else Config.REQUEST_TIMEOUT,
            session=session
        )

        self.time = int(time.time())
        self.prefix = str(self.time)
        self.archive_type = ArchiveType.TAR
        self.compression = True
        self.remove_local_file = True
        self.source_path = None
        self.database = None
        self.remote_dir = None
        self.set_remote_dir(remote_dir or Config.REMOTE_DIR)

        self.temp_dir = os.path.abspath(temp_dir or Config.TEMP_DIR)
        try:
            os.makedirs(self.temp_dir, mode=0o755, exist_ok=True)
        except OSError as e:
            raise ConfigurationError(f"Cannot create temp directory {self.temp_dir}: {e}") from e

        self.artifact_path = None
        self.remote_url = None
        self.executed = False
        self.logs = []

    # Configuration

    def set_type(self, archive_type) -> 'BackupJob':
        """Select the archive format; it must be writable on this host."""
        try:
            self.archive_type = require_available(archive_type)
        except ArchiveError as e:
            raise ConfigurationError(str(e)) from e
        return self

    def set_compression(self, compression: bool) -> 'BackupJob':
        if not isinstance(compression, bool):
            raise ConfigurationError(f"Compression flag must be a boolean, got {compression!r}")
        self.compression = compression
        return self

    def set_remove_local_file(self, remove: bool) -> 'BackupJob':
        if not isinstance(remove, bool):
            raise ConfigurationError(f"Remove flag must be a boolean, got {remove!r}")
        self.remove_local_file = remove
        return self

    def set_prefix(self, label: str) -> 'BackupJob':
        """
        Append a label to the timestamp prefix.

        ``"My Backup"`` at time T gives ``"T-my-backup"``.
        """
        normalized = _LABEL_SEPARATORS.sub('-', (label or '').strip().lower())
        if not normalized:
            raise ConfigurationError("Prefix label must not be empty")
        self.prefix = f"{self.time}-{normalized}"
        return self

    def set_folder(self, path: str) -> 'BackupJob':
        """Set the directory to back up."""
        if not path or not os.path.isdir(path):
            raise ConfigurationError(f"Source path does not exist or is not a directory: {path}")
        self.source_path = os.path.abspath(path)
        return self

    def set_database(self, database) -> 'BackupJob':
        """
        Set the database to dump into the archive.

        Args:
            database: SQLAlchemy Engine, URL object or URL string
        """
        if isinstance(database, Engine):
            self.database = database
            return self

        try:
            url = make_url(database)
            self.database = create_engine(url)
        except (ArgumentError, ImportError, TypeError) as e:
            raise ConfigurationError(f"Invalid database URL: {e}") from e
        return self

    def set_database_credentials(self, user: str, password: str, name: str,
                                 host: str = 'localhost', driver: str = 'mysql+pymysql') -> 'BackupJob':
        """Set the database from connection parts instead of a URL."""
        if not name:
            raise ConfigurationError("Database name is required")
        url = URL.create(driver, username=user, password=password, host=host, database=name)
        return self.set_database(url)

    def set_remote_dir(self, name: str) -> 'BackupJob':
        normalized = (name or '').strip().strip('/')
        if not normalized:
            raise ConfigurationError("Remote directory name must not be empty")
        self.remote_dir = normalized
        return self

    # Execution

    def execute(self) -> 'BackupJob':
        """
        Run the backup.

        Returns:
            This job, with artifact_path and remote_url filled in

        Raises:
            ConfigurationError: If the job was already executed
            RemoteProtocolError: If the directory or the upload is rejected
            TransportError: If the server cannot be reached
            ArchiveError: If the archive cannot be built
            DatabaseError: If the database dump fails
        """
        if self.executed:
            raise ConfigurationError("Backup job has already been executed")
        self.executed = True

        dump_path = os.path.join(self.temp_dir, f"{self.prefix}.sql")
        self._log(f"Starting backup {self.prefix} to {self.base_url}{self.remote_dir}")

        try:
            self.ensure_remote_directory()
            self._build_archive(dump_path)
            self._publish()
        except Exception as e:
            self._log(f"Backup failed: {e}")
            raise
        finally:
            self._remove(dump_path)

        self._log("Backup completed successfully")
        return self

    def check_connection(self) -> 'BackupJob':
        """
        Make sure the server accepts the job's credentials.

        Raises:
            RemoteProtocolError: If the server rejects the credentials
            TransportError: If the server cannot be reached
        """
        self.client.test_connection(self.base_url)
        self._log(f"Connected to {self.base_url}")
        return self

    def ensure_remote_directory(self):
        """Make sure the remote backup directory exists."""
        url = self._remote_url()

        result = self.client.propfind(url, depth=0)
        if result.status_code == 404:
            self._log(f"Remote directory missing, creating {url}")
            result = self.client.mkcol(url)

        if result.status_code not in (201, 207):
            raise RemoteProtocolError(
                f"Failed to create remote directory ({result.status_code})", result.status_code
            )

    def _build_archive(self, dump_path: str):
        base_path = os.path.join(self.temp_dir, self.prefix)
        self._log(f"Creating archive (format: {self.archive_type.value}, compression: {self.compression})")
        archive = open_archive(base_path, self.archive_type, self.compression)

        try:
            if self.source_path:
                count = archive.add_directory_tree(self.source_path)
                self._log(f"Added {count} files from {self.source_path}")

            if self.database is not None:
                self._log("Dumping database")
                SQLDumpGenerator(self.database).dump(dump_path)
                if os.path.exists(dump_path):
                    archive.add_file(dump_path, f"sql/{self.prefix}.sql")

            self.artifact_path = archive.finalize()
        except Exception:
            archive.discard()
            raise

        size = get_archive_size(self.artifact_path)
        self._log(f"Archive created: {os.path.basename(self.artifact_path)} ({size / 1024 / 1024:.2f} MB)")

    def _publish(self):
        name = artifact_name(self.prefix, self.archive_type, self.compression)
        path = os.path.join(self.temp_dir, name)

        if not os.path.exists(path):
            raise ArchiveError(f"Archive not found: {path}")

        url = self._remote_url(name)
        self._log(f"Uploading {name}")
        result = self.client.put_file(url, path)

        if result.status_code != 201:
            raise RemoteProtocolError(f"Upload failed ({result.status_code})", result.status_code)

        self.remote_url = url
        self._log(f"Uploaded to {url}")

        if self.remove_local_file:
            self._remove(path)

    def _remote_url(self, filename: Optional[str] = None) -> str:
        url = self.base_url + quote(self.remote_dir)
        if filename:
            url += '/' + quote(filename)
        return url

    def _remove(self, path: str):
        """Delete a temporary file, never raising."""
        if not os.path.exists(path):
            return
        try:
            os.remove(path)
            self._log(f"Removed {os.path.basename(path)}")
        except OSError as e:
            logger.warning(f"Failed to remove {path}: {e}")

    def _log(self, message: str):
        """
        Add a log message with timestamp.

        Args:
            message: Log message
        """
        timestamp = datetime.utcnow().strftime('%Y-%m-%d %H:%M:%S UTC')
        self.logs.append(f"[{timestamp}] {message}")
        logger.info(message)


def build_job_from_config(cfg=Config, session=None) -> BackupJob:
    """
    Build a backup job from a configuration object.

    A BASE_URL takes precedence over PROVIDER.

    Args:
        cfg: Config class or instance (see davbackup.config)
        session: Optional requests session for the WebDAV client

    Returns:
        Configured BackupJob

    Raises:
        ConfigurationError: If the configuration is incomplete or invalid
    """
    from davbackup.providers import resolve_provider

    if not cfg.LOGIN or not cfg.PASSWORD:
        raise ConfigurationError("DAVBACKUP_LOGIN and DAVBACKUP_PASSWORD must be set")

    if getattr(cfg, 'BASE_URL', None):
        base_url, auth_scheme = cfg.BASE_URL, cfg.AUTH_SCHEME
    else:
        url_params = {'cid': cfg.PROVIDER_CID} if cfg.PROVIDER_CID else {}
        preset = resolve_provider(cfg.PROVIDER, cfg.LOGIN, **url_params)
        base_url, auth_scheme = preset.base_url, preset.auth_scheme

    job = BackupJob(
        base_url,
        cfg.LOGIN,
        cfg.PASSWORD,
        auth_scheme=auth_scheme,
        temp_dir=cfg.TEMP_DIR,
        remote_dir=cfg.REMOTE_DIR,
        timeout=cfg.REQUEST_TIMEOUT,
        session=session
    )
    job.set_type(cfg.ARCHIVE_TYPE)
    job.set_compression(cfg.COMPRESSION)
    job.set_remove_local_file(cfg.REMOVE_LOCAL_FILE)

    if cfg.PREFIX:
        job.set_prefix(cfg.PREFIX)
    if cfg.SOURCE_PATH:
        job.set_folder(cfg.SOURCE_PATH)
    if cfg.DATABASE_URL:
        job.set_database(cfg.DATABASE_URL)

    if not job.source_path and job.database is None:
        raise ConfigurationError("Nothing to back up: set DAVBACKUP_SOURCE_PATH and/or DAVBACKUP_DATABASE_URL")

    return job


def execute_backup_from_config(cfg=Config) -> BackupJob:
    """
    Build and run a backup job from a configuration object.

    The credentials are checked against the server before anything is
    archived.

    Returns:
        The executed BackupJob
    """
    job = build_job_from_config(cfg)
    return job.check_connection().execute()
