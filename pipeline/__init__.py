"""Pipeline components.

This package contains the timeline reader, checkpoint resolution, the DuckDB
metadata scan, object fetching, the incremental source orchestrator and the
checkpoint/batch storage used by the worker.
"""
