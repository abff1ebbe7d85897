"""Read-only consistency checks over the whole reference graph."""
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, List

from notegraph.storage.base import LinkStore, NoteStore


@dataclass
class AuditReport:
    """Invariant violations found in the store. Empty lists mean healthy."""

    asymmetric_edges: List[str] = field(default_factory=list)
    edges_without_link: List[str] = field(default_factory=list)
    links_without_edge: List[str] = field(default_factory=list)
    duplicate_links: List[str] = field(default_factory=list)
    dangling_ids: List[str] = field(default_factory=list)
    stale_placeholders: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not any(
            (
                self.asymmetric_edges,
                self.edges_without_link,
                self.links_without_edge,
                self.duplicate_links,
                self.dangling_ids,
                self.stale_placeholders,
            )
        )

    def to_dict(self) -> Dict[str, object]:
        return {
            "ok": self.ok,
            "asymmetric_edges": self.asymmetric_edges,
            "edges_without_link": self.edges_without_link,
            "links_without_edge": self.links_without_edge,
            "duplicate_links": self.duplicate_links,
            "dangling_ids": self.dangling_ids,
            "stale_placeholders": self.stale_placeholders,
        }


def audit_graph(notes: NoteStore, links: LinkStore) -> AuditReport:
    """Check symmetry, link/edge agreement, row uniqueness and placeholder closure.

    This reads every note and row, so it is meant for diagnostics and
    tests, never for the write path.
    """
    report = AuditReport()
    all_notes = {note.id: note for note in notes.all()}
    all_links = links.all()
    titles = {note.title for note in all_notes.values()}

    for note in all_notes.values():
        for target_id in sorted(note.outgoing):
            target = all_notes.get(target_id)
            if target is None:
                report.dangling_ids.append(f"{note.id}.outgoing -> {target_id}")
            elif note.id not in target.incoming:
                report.asymmetric_edges.append(f"{note.id} -> {target_id}")
        for source_id in sorted(note.incoming):
            source = all_notes.get(source_id)
            if source is None:
                report.dangling_ids.append(f"{note.id}.incoming <- {source_id}")
            elif note.id not in source.outgoing:
                report.asymmetric_edges.append(f"{source_id} -> {note.id} (incoming only)")

    resolved_pairs = set()
    for link in all_links:
        if link.source_id not in all_notes:
            report.dangling_ids.append(f"link {link.id} source {link.source_id}")
            continue
        if link.resolved:
            if link.target_id not in all_notes:
                report.dangling_ids.append(f"link {link.id} target {link.target_id}")
                continue
            resolved_pairs.add((link.source_id, link.target_id))
            if link.target_id not in all_notes[link.source_id].outgoing:
                report.links_without_edge.append(
                    f"{link.source_id} -> {link.target_id} ({link.target_title!r})"
                )
        elif link.target_title in titles:
            report.stale_placeholders.append(f"{link.source_id} -> {link.target_title!r}")

    for note in all_notes.values():
        for target_id in sorted(note.outgoing):
            if target_id in all_notes and (note.id, target_id) not in resolved_pairs:
                report.edges_without_link.append(f"{note.id} -> {target_id}")

    counts = Counter(link.key for link in all_links)
    for (source_id, title), count in sorted(counts.items()):
        if count > 1:
            report.duplicate_links.append(f"{source_id} -> {title!r} x{count}")

    return report
