"""
TouchGrass DC event ingestion.

Normalizes heterogeneous event payloads for the Washington DC area into a
canonical record, stores them idempotently and mirrors them into a search
index.
"""

__version__ = "0.1.0"
