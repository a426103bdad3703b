#!/usr/bin/env python3
"""CityQuest entry point: `python -m cityquest` or the `cityquest` script."""

from .cli import main


if __name__ == "__main__":
    main()
