"""Identity resolution: actors -> canonical contacts and accounts."""
