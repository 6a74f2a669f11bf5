"""
Main entry point for running syltag as a module.
Allows: python -m syltag ...
"""
import sys
from .cli import main

if __name__ == "__main__":
    sys.exit(main())
