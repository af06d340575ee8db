"""Collector marketplace backend (FastAPI + Postgres/S3/Redis)."""
