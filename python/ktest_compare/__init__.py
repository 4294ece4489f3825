"""Benchmark sample ingestion, statistical comparison and text rendering."""
