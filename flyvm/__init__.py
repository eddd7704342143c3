"""Provision, reach, and watch remote machines through a private mesh tunnel."""

from __future__ import annotations

__version__ = '0.1.0'
