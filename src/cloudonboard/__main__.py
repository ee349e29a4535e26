"""
Entry point for running CloudOnboard as a module.

Allows running CloudOnboard with:
    python -m cloudonboard add --profile prod cloud-native-protection
"""

import sys

from cloudonboard.cli import main

if __name__ == "__main__":
    sys.exit(main())
