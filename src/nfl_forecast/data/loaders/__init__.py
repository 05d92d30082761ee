"""
Dataset loaders.

``sources.SourceGateway`` walks the ordered candidates declared in
``catalog.default_catalog``; ``nflreadpy_client`` is the library fallback.
"""

__all__: list[str] = []
