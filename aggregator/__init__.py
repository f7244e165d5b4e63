"""Conversion aggregation service package.

Holds the FastAPI application, the flush engine services and the persistence
models. Importing the package has no side effects; the application object
lives in ``aggregator.main``.
"""

__all__: list[str] = []
