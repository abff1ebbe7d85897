"""Reference parsing, resolution and graph maintenance."""

from notegraph.linking.audit import AuditReport, audit_graph
from notegraph.linking.cascade import CascadeHandler
from notegraph.linking.diff import LinkDiffEngine
from notegraph.linking.mutator import GraphMutator
from notegraph.linking.parser import has_references, parse_references
from notegraph.linking.resolver import TitleResolver

__all__ = [
    "AuditReport",
    "audit_graph",
    "CascadeHandler",
    "GraphMutator",
    "LinkDiffEngine",
    "TitleResolver",
    "has_references",
    "parse_references",
]
