"""todosync: keeps a plain-text todo list consistent across clients.

A small FastAPI server holds the authoritative copy plus an archive of
superseded revisions; clients run a sync state machine that pushes local
edits, polls in the background and surfaces conflicts.
"""

__version__ = "0.1.0"
