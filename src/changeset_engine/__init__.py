"""changeset-engine: transactional change-sets for agent edits to their own host."""

__version__ = "0.1.0"
