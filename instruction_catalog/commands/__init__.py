"""CLI command implementations. Each `run_*` returns a process exit code."""
