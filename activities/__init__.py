"""Activities mirror: reconcile a fitness provider's activities into Postgres and object storage."""

__version__ = "0.1.0"
