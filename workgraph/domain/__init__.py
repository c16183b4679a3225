"""Domain layer for workgraph."""
