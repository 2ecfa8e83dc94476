"""State/store layer.

This package is the single source of truth for how snapshots and
incremental updates coming from the push channel and the pull fallback are
merged into the per-topic state consumers read.
"""
