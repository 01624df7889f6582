"""Entry point for `python -m kubenav`.

Usage:
    python -m kubenav browse --context prod --context staging
    python -m kubenav get pods -A
"""

from __future__ import annotations

from kubenav.cli import cli

cli()
