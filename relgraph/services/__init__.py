"""Application services for relgraph.

Services implement the compile, validate and publish cycle, coordinating
between the domain layer (core/) and the filesystem (platform/).
"""

from relgraph.services.graph.service import CompileOutcome, GraphService, QueryCost, assemble

__all__ = [
    "GraphService",
    "CompileOutcome",
    "QueryCost",
    "assemble",
]
