from .resource_graph import GraphResource, ResourceGraph, build_graph
from .values import UNKNOWN, Reference, contains_unknown

__all__ = ["GraphResource", "ResourceGraph", "build_graph", "UNKNOWN", "Reference", "contains_unknown"]
