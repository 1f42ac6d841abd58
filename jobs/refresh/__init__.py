"""Refresh runner package.

Modules:
- config: RefreshRunnerConfig dataclass
- cli: CLI entry point (main)
"""

from .config import RefreshRunnerConfig
from .cli import main, run_once

__all__ = ["RefreshRunnerConfig", "main", "run_once"]
