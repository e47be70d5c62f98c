"""Account scoring: pure factor computation plus snapshot persistence."""
