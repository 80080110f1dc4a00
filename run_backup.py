#!/usr/bin/env python3
"""Run one backup and exit (cron / manual use)"""
import sys
from tuition_backup.backup.executor import main

if __name__ == '__main__':
    sys.exit(main())
