"""notesync: reconcile notes between a local store and a remote store."""

__version__ = "0.3.0"
