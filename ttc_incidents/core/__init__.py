"""Configuration, database, logging and telemetry plumbing."""
