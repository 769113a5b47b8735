"""
Data source lifecycle: state machine, connection tests, schema
introspection, sync runs and the background jobs that execute them.
"""
