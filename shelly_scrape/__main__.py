"""
shelly-scrape - entry point for module execution

python -m shelly_scrape --discover
"""

import sys

from .cli import main

if __name__ == "__main__":
    sys.exit(main())
