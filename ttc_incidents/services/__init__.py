"""Ingestion, threading, reconciliation and maintenance services."""
