"""Queue-consuming worker for the group membership feature."""
