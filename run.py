#!/usr/bin/env python3
"""Entry point script for ytstream."""
import asyncio
import sys

from ytstream.main import main


if __name__ == "__main__":
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        print("\nStopped by user. Goodbye!")
        sys.exit(0)
