"""
Ingestion Layer for TouchGrass DC.

This package handles normalization, identity, persistence and search
indexing of event data handed over by crawlers, third-party APIs and manual
submissions.

Key Components:
- EventNormalizer: Maps raw source shapes to NormalizedEvent
- EventPersistenceGateway: Idempotent storage keyed by identity
- IndexPropagator: Best-effort mirroring into the search index
- IngestionOrchestrator: Runs one batch through all three stages
"""
