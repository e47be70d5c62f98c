"""Job execution helpers: retries, rate limits, idempotent job runs, background tasks."""
