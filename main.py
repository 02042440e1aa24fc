#!/usr/bin/env python3
"""Entry point for the nginx log exporter."""

import sys

from nginx_log_exporter.cli import main

if __name__ == "__main__":
    sys.exit(main())
