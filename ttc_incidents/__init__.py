"""TTC transit disruption ingestion and incident threading engine."""

__version__ = "0.1.0"
