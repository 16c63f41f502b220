#!/usr/bin/env python3
"""
ChatSentry main entry point

This module provides the main entry point for the ChatSentry package.
It launches the console monitor.
"""

import sys

from chatsentry.main import main


def cli_main():
    """Synchronous entry point for CLI usage."""
    sys.exit(main())


if __name__ == "__main__":
    cli_main()
