"""
Event Coming — Entry Point.

Single entry point: `python main.py` starts the scheduler sweep worker.
"""

import logging

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

from event_coming.app import main

if __name__ == "__main__":
    main()
