"""
Main entry point for running simplesocks as a module.

Usage:
    python -m simplesocks serve --relay mypackage.relay:pipe
    python -m simplesocks decode "05 01 00 05 01 00 01 7f 00 00 01 01 bb"
"""

from .cli import cli

if __name__ == "__main__":
    cli()
