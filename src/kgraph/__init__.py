"""kgraph - project knowledge graph and session memory for coding agents."""

__version__ = "0.3.0"
