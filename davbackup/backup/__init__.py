"""
Backup module for DavBackup.

This module handles the core backup functionality including:
- Archive creation (tar, zip, rar)
- SQL dumps of relational databases
- WebDAV publishing
- Execution orchestration
"""

from .executor import BackupJob, build_job_from_config, execute_backup_from_config
from .archive import ArchiveType, ArchiveError, open_archive, available_types
from .dump import SQLDumpGenerator, DatabaseError
from .webdav import WebDAVClient, HttpResult, TransportError, RemoteProtocolError

__all__ = [
    'BackupJob',
    'build_job_from_config',
    'execute_backup_from_config',
    'ArchiveType',
    'ArchiveError',
    'open_archive',
    'available_types',
    'SQLDumpGenerator',
    'DatabaseError',
    'WebDAVClient',
    'HttpResult',
    'TransportError',
    'RemoteProtocolError'
]
