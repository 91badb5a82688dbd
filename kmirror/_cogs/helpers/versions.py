"""
The package's own version, as installed (not stored in the source code).

It is used in the ``User-Agent`` header and in ``kmirror --version``.
It is ``None`` when the package runs from a source tree without installation.
"""
import importlib.metadata
from typing import Optional


def _detect(distribution: str) -> Optional[str]:
    try:
        return importlib.metadata.version(distribution)
    except importlib.metadata.PackageNotFoundError:
        return None


version: Optional[str] = _detect(__name__.split('.')[0])
