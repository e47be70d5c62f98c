"""Signal ingestion: fingerprinting, deduplication and storage."""
