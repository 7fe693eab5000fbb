"""
Shared pytest fixtures for DavBackup tests.

This module provides fixtures for:
- Temporary source trees and temp directories
- A fake WebDAV server behind a mocked requests session
- SQLite databases standing in for the backed-up database
- A fake ``rar`` command line tool
- Ready-to-run backup jobs
"""

import os
import subprocess
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy import create_engine, text

from davbackup.backup.executor import BackupJob


class FakeDAVServer:
    """
    Callable replacing requests.Session.request.

    Answers each method with a configured status code and records every
    call; PUT bodies are read and kept in ``uploads`` by URL.
    """

    def __init__(self, propfind=207, mkcol=201, put=201):
        self.statuses = {'PROPFIND': propfind, 'MKCOL': mkcol, 'PUT': put}
        self.calls = []
        self.uploads = {}

    def __call__(self, method, url, headers=None, data=None, **kwargs):
        self.calls.append((method, url, dict(headers or {}), kwargs))

        if method == 'PUT' and data is not None:
            self.uploads[url] = data.read()

        response = MagicMock()
        response.status_code = self.statuses.get(method, 200)
        response.content = b''
        return response

    def methods(self):
        return [call[0] for call in self.calls]


class FakeRarTool:
    """
    Callable replacing subprocess.run for the rar command line tool.

    Records each command and the files staged in its working directory,
    then writes a placeholder archive at the requested path.
    """

    def __init__(self):
        self.commands = []
        self.staging_dirs = []
        self.staged = {}

    def __call__(self, args, cwd=None, **kwargs):
        self.commands.append(list(args))
        self.staging_dirs.append(cwd)

        for dirpath, _, filenames in os.walk(cwd):
            for name in filenames:
                path = os.path.join(dirpath, name)
                entry_name = os.path.relpath(path, cwd).replace(os.sep, '/')
                with open(path, 'rb') as f:
                    self.staged[entry_name] = f.read()

        with open(args[-2], 'wb') as f:
            f.write(b'Rar!\x1a\x07\x01\x00')

        return subprocess.CompletedProcess(args, 0, b'', b'')


@pytest.fixture
def dav_server():
    """Fake WebDAV server where the backup directory already exists."""
    return FakeDAVServer()


@pytest.fixture
def mock_session(dav_server):
    """
    Mock requests.Session routed to the fake WebDAV server.
    """
    session = MagicMock()
    session.headers = {}
    session.request.side_effect = dav_server
    return session


@pytest.fixture
def temp_files(tmp_path):
    """
    Create a source tree to back up.

    Creates:
    - test_file1.txt
    - test_file2.log
    - nested/test_file3.txt
    - nested/deeper/data.bin
    - empty/ (directory without files)
    """
    source = tmp_path / 'source'
    source.mkdir()

    (source / 'test_file1.txt').write_text('Test content 1')
    (source / 'test_file2.log').write_text('Test log content')

    nested_dir = source / 'nested'
    nested_dir.mkdir()
    (nested_dir / 'test_file3.txt').write_text('Nested test content')

    deeper_dir = nested_dir / 'deeper'
    deeper_dir.mkdir()
    (deeper_dir / 'data.bin').write_bytes(bytes(range(256)))

    (source / 'empty').mkdir()

    return source


@pytest.fixture
def expected_tree(temp_files):
    """Entry name -> content mapping for the temp_files tree."""
    return {
        'test_file1.txt': b'Test content 1',
        'test_file2.log': b'Test log content',
        'nested/test_file3.txt': b'Nested test content',
        'nested/deeper/data.bin': bytes(range(256)),
    }


@pytest.fixture
def temp_dir(tmp_path):
    """Job temp directory (created by the job itself)."""
    return tmp_path / 'tmp'


@pytest.fixture
def sqlite_engine(tmp_path):
    """
    SQLite database with a populated and an empty table.
    """
    engine = create_engine(f"sqlite:///{tmp_path / 'source.db'}")

    with engine.begin() as conn:
        conn.execute(text(
            "CREATE TABLE people (id INTEGER PRIMARY KEY, name VARCHAR(20), "
            "balance DECIMAL(10,2), note TEXT)"
        ))
        conn.execute(text(
            "INSERT INTO people (id, name, balance, note) VALUES "
            "(1, 'Alice', 3.5, 'first'), "
            "(2, 'O''Brien', 10.25, NULL), "
            "(3, 'Carol', NULL, 'semi;colon')"
        ))
        conn.execute(text("CREATE TABLE tags (id INTEGER, label VARCHAR(10))"))

    yield engine

    engine.dispose()


@pytest.fixture
def backup_job(temp_dir, mock_session):
    """
    Backup job against the fake WebDAV server.
    """
    return BackupJob(
        'https://dav.example.com/',
        'user',
        'secret',
        temp_dir=str(temp_dir),
        session=mock_session
    )


@pytest.fixture
def rar_installed():
    """Pretend the rar tool is on PATH."""
    with patch('davbackup.backup.archive.shutil.which', return_value='/usr/bin/rar'):
        yield


@pytest.fixture
def fake_rar(rar_installed):
    """Fake rar tool standing in for subprocess.run."""
    tool = FakeRarTool()
    with patch('davbackup.backup.archive.subprocess.run', side_effect=tool) as mock_run:
        tool.mock = mock_run
        yield tool


@pytest.fixture
def symlinked_tree(tmp_path):
    """
    Create a source tree containing links.

    Creates:
    - plain.txt
    - link.txt -> ../outside.txt
    - dangling -> ../missing.txt (broken link)
    - dirlink -> ../linked_dir/ (link to a directory)
    """
    (tmp_path / 'outside.txt').write_bytes(b'payload')
    linked_dir = tmp_path / 'linked_dir'
    linked_dir.mkdir()
    (linked_dir / 'inner.txt').write_bytes(b'inner')

    source = tmp_path / 'src'
    source.mkdir()
    (source / 'plain.txt').write_bytes(b'plain')
    os.symlink(os.path.join('..', 'outside.txt'), str(source / 'link.txt'))
    os.symlink(os.path.join('..', 'missing.txt'), str(source / 'dangling'))
    os.symlink(os.path.join('..', 'linked_dir'), str(source / 'dirlink'))

    return source
