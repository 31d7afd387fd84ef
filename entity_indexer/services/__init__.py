"""Business logic services for the entity indexing pipeline.

Available Services:
    - normalization: Product text normalization and entity slugs
    - llm: LLM clients and extraction prompts
    - extraction: JSON recovery, validation, cascade and heuristic baseline
    - scheduler: Bounded-concurrency task runner
    - persistence: Merge policy, document stores and batched writer
    - catalog: Product reads from the catalog store
    - indexer: Bootstrap / single-product pipeline
"""
