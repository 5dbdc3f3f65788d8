"""Distribution metadata for litestar-flows, read from the installed package."""

from __future__ import annotations

import importlib.metadata

__all__ = ("__project__", "__version__")

__version__ = importlib.metadata.version("litestar-flows")
"""Installed version of litestar-flows."""
__project__ = importlib.metadata.metadata("litestar-flows")["Name"]
"""Distribution name as declared in pyproject.toml."""
