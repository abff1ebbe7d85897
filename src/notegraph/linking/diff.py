"""Computation of the edits that bring a note's links in line with its text."""
import logging
from typing import Dict, Optional, Sequence

from notegraph.exceptions import NoteNotFoundError
from notegraph.linking.resolver import TitleResolver
from notegraph.models.schema import EdgeChange, EditScript, Link
from notegraph.storage.base import LinkStore, NoteStore

logger = logging.getLogger(__name__)


class LinkDiffEngine:
    """Diffs freshly parsed titles against a note's stored reference state.

    The comparison is made against what the store holds right now, the
    source's ``outgoing`` set and its link rows, not against the previous
    title list. A second diff with no change in between is always empty,
    and a diff taken after an inconsistency repairs it.
    """

    def __init__(self, notes: NoteStore, links: LinkStore, resolver: TitleResolver):
        self.notes = notes
        self.links = links
        self.resolver = resolver

    def diff(
        self,
        source_id: str,
        previous_titles: Sequence[str],
        new_titles: Sequence[str],
    ) -> EditScript:
        """Build the edit script for ``source_id``.

        Args:
            source_id: The note whose text was committed.
            previous_titles: Titles parsed from the text before the change.
                Only used for logging.
            new_titles: Titles parsed from the committed text.

        Raises:
            NoteNotFoundError: If the source note does not exist.
        """
        source = self.notes.get(source_id)
        if source is None:
            raise NoteNotFoundError(source_id)

        desired: Dict[str, Optional[str]] = {}
        for title in new_titles:
            if title not in desired:
                desired[title] = self.resolver.resolve(title)
        desired_targets = {tid for tid in desired.values() if tid is not None}
        targets = {note.id: note for note in self.notes.get_many(sorted(desired_targets))}

        rows: Dict[str, Link] = {link.target_title: link for link in self.links.by_source(source_id)}
        script = EditScript(source_id=source_id)

        for title, target_id in desired.items():
            if target_id is None:
                row = rows.get(title)
                if row is None or row.resolved:
                    script.add_placeholders.append(title)
                continue
            row = rows.get(title)
            if (
                target_id not in source.outgoing
                or row is None
                or not row.resolved
                or row.target_id != target_id
                or source_id not in targets[target_id].incoming
            ):
                script.add_edges.append(EdgeChange(title, target_id))

        covered = set()
        for title, row in rows.items():
            if not row.resolved:
                if title not in desired:
                    script.remove_placeholders.append(title)
                continue
            if desired.get(title) != row.target_id:
                script.remove_edges.append(EdgeChange(title, row.target_id))
            covered.add(row.target_id)

        # Adjacency entries with no link row behind them and no reference
        # resolving to them
        for stray in sorted(source.outgoing - desired_targets - covered):
            script.remove_edges.append(EdgeChange(None, stray))

        if not script.is_empty:
            logger.debug(
                f"Diff for {source_id}: {len(previous_titles)} -> {len(new_titles)} titles, "
                f"+{len(script.add_edges)}/-{len(script.remove_edges)} edges, "
                f"+{len(script.add_placeholders)}/-{len(script.remove_placeholders)} placeholders"
            )
        return script
