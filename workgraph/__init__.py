"""workgraph: declarative task-graph workflow engine."""

__version__ = "0.1.0"
