"""Wahapedia rules dataset ingestion into PostgreSQL."""
