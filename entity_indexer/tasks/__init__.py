"""arq tasks for the entity indexer."""
from entity_indexer.tasks.indexing_tasks import bootstrap_catalog_task, index_product_task

__all__ = [
    "bootstrap_catalog_task",
    "index_product_task",
]
