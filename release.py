#!/usr/bin/env python3
"""shipwright Release Pipeline - Entry Point."""
import sys

# Allow running from a checkout without installing
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent))

from shipwright.cli import main

if __name__ == "__main__":
    sys.exit(main())
