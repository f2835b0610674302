"""Storage protocols, in-memory implementations and pattern snapshots."""
