#!/usr/bin/env python3
"""
nullinfer CLI entry point for `python -m nullinfer`.

Usage:
    python -m nullinfer infer widget.cc
    python -m nullinfer evidence widget.cc --format json
"""

import sys
from nullinfer.cli import main

if __name__ == "__main__":
    sys.exit(main())
