"""Core replication, conflict resolution and backup components."""
