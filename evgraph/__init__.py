"""evgraph - tamper-evident evidence graph for regulatory compliance."""

__version__ = "0.1.0"
