"""Live runtime state.

The config store is the single owner of the mutable settings that
configuration messages may change while the process runs.
"""
