"""Contact ingestion, labeling, search and directory sync service."""
