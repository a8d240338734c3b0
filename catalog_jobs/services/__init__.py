"""Stateful services: job store, progress tracker, dequeuer, sync processor."""
