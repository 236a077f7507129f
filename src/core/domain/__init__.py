"""Domain models and option enums.

Pure data structures (Pydantic v2). The domain knows nothing about
subprocesses, HTTP or the CLI: only isolation-segment concepts.
"""
