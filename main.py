"""
Run the tile processor from a source checkout

Usage:
    python main.py tile --source DIR --dest DIR [--width N] [--height N] ...
    python main.py blurry --source FILE [--threshold T]

Same commands as the installed `ml-image-tile` script.
"""

import sys

from tile_processor.main import main

if __name__ == "__main__":
    sys.exit(main())
