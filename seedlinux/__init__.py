"""Seed Linux image builder.

Core design goals:
- Explicit, strictly sequential stage pipeline
- Fail fast; nothing is packaged from an incomplete sysroot
- Downloaded sources are cached across runs, atomically
- Components are data; recipes are a closed set of build kinds
- Centralized logging
"""

__all__ = []
