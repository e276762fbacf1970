"""Batch orchestration, persistence, series sources and live signals."""
