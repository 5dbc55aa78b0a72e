"""Application framework pieces: alerting."""
