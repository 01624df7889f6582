"""kubenav command-line interface.

Exposes:
    cli -- Click group entry point (registered as ``kubenav`` script).
"""

from kubenav.cli.main import cli

__all__ = ["cli"]
