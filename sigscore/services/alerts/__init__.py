"""Alert rules, edge-triggered evaluation and notification dispatch."""
