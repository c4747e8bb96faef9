# -*- coding: utf-8 -*-
"""Oracle Synchronization Script

This script keeps an Oracle Spatial table in step with a PostgreSQL view. It is
meant to be started by cron, once per pipeline, at staggered times.

Every run checks that ogr2ogr and both databases are reachable before anything
is changed. If the destination table exists it is truncated (its sequence is
restarted at 1) and reloaded in append mode; otherwise ogr2ogr creates it and a
spatial index is added afterwards. Optimizer statistics are refreshed at the end.

Usage:
    The script can be called from the command line using the following commands:

        $ oracle-sync run --pipeline abone_adres_bilgileri
        $ oracle-sync test
        $ oracle-sync dry-run

    Connection parameters are read from the environment (or a `.env` file), see
    `oracle_sync.config`. Each run writes its own timestamped log file.
"""

__version__ = "0.1.0"
