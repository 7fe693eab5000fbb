#!/usr/bin/env python3
"""One-shot backup runner, configured through DAVBACKUP_* environment variables"""
import os
import sys
import logging

from davbackup import configure_logging
from davbackup.config import config
from davbackup.backup import execute_backup_from_config

if __name__ == '__main__':
    cfg = config[os.environ.get('DAVBACKUP_ENV', 'default')]
    configure_logging(cfg)

    try:
        job = execute_backup_from_config(cfg)
    except Exception as e:
        logging.getLogger('davbackup').error(f"Backup failed: {e}")
        sys.exit(1)

    logging.getLogger('davbackup').info(f"Backup stored at {job.remote_url}")
