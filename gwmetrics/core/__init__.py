"""Core metrics engine: errors, settings and the metrics aggregator."""
