"""
Entry point for running httpprobe as a module.

Usage: python -m httpprobe -u URL [OPTIONS]
"""

from .cli import main

if __name__ == "__main__":
    main()
