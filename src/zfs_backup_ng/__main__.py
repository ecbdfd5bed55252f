# pyright: standard

"""zfs-backup-ng: zfs_backup_ng/__main__.py.

Back up zfs datasets to a remote store, full or incremental, compressed
and encrypted on the way.
"""

import sys

from .cli import main

if __name__ == "__main__":
    sys.exit(main())
