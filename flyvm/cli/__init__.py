"""CLI package exports for top-level command entry points."""

from __future__ import annotations

from .main import FlyVMModalCLI, main

__all__ = ['FlyVMModalCLI', 'main']
