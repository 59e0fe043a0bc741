"""Pydantic schemas for upstream payloads and API responses."""
