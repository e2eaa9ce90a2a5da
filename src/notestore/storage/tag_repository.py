"""Repository for the tag index, tag search and saved tag groups."""
import json
import logging
from typing import List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.orm import selectinload, sessionmaker

from notestore.config import config
from notestore.exceptions import TagGroupNotFoundError
from notestore.models.db_models import DBNote, DBNoteTag, DBTagGroup
from notestore.models.schema import Note, TagGroup, ensure_timezone_aware, utc_now
from notestore.storage.base import Repository
from notestore.storage.metadata_repository import MetadataRepository
from notestore.storage.note_repository import NoteRepository
from notestore.utils import escape_like_pattern

logger = logging.getLogger(__name__)


class TagRepository(Repository):
    """Tag index over note tag sets, plus CRUD for tag groups.

    Tags are plain strings on each note; every query here derives the
    tag to note mapping by scanning ``note_tags``. Searches only return
    notes that are not soft-deleted, while rename and delete rewrite every
    note's tag set.
    """

    def __init__(
        self,
        engine: Engine,
        metadata: MetadataRepository,
        session_factory: Optional[sessionmaker] = None,
        tag_group_limit: Optional[int] = None,
        case_sensitive: Optional[bool] = None,
    ):
        super().__init__(engine, session_factory)
        self.metadata = metadata
        self.tag_group_limit = (
            config.tag_group_limit if tag_group_limit is None else tag_group_limit
        )
        self.case_sensitive = (
            config.title_search_case_sensitive
            if case_sensitive is None
            else case_sensitive
        )

    def _notes_where(self, operation: str, *criteria) -> List[Note]:
        """Active notes matching ``criteria``, most recently updated first."""
        with self.reading(operation) as session:
            db_notes = session.scalars(
                select(DBNote)
                .options(selectinload(DBNote.patches), selectinload(DBNote.tags))
                .where(DBNote.deleted.is_(False), *criteria)
                .order_by(DBNote.updated_at.desc(), DBNote.id.desc())
            ).all()
            return [NoteRepository._to_model(db_note) for db_note in db_notes]

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def by_tag(self, tag_name: str) -> List[Note]:
        """Active notes whose tag set contains ``tag_name``."""
        return self.search_tag_group([tag_name])

    def by_tag_prefix(self, prefix: str) -> List[Note]:
        """Active notes carrying any tag that starts with ``prefix``."""
        pattern = f"{escape_like_pattern(prefix)}%"
        matching = (
            select(DBNoteTag.note_id)
            .where(DBNoteTag.name.like(pattern, escape="\\"))
            .distinct()
        )
        return self._notes_where("by_tag_prefix", DBNote.id.in_(matching))

    def search_tag_group(self, tags: List[str]) -> List[Note]:
        """Active notes whose tag set is a superset of ``tags``.

        Each tag contributes one subquery and the subqueries are
        intersected, so a note must carry every tag to match.
        """
        base_query = None
        for tag_name in sorted(set(tags)):
            subquery = select(DBNoteTag.note_id).where(DBNoteTag.name == tag_name)
            if base_query is None:
                base_query = subquery
            else:
                base_query = base_query.intersect(subquery)

        if base_query is None:
            return []
        return self._notes_where("search_tag_group", DBNote.id.in_(base_query))

    def search_title(
        self, pattern: str, case_sensitive: Optional[bool] = None
    ) -> List[Note]:
        """Active notes whose title contains ``pattern`` as a substring.

        Args:
            pattern: Literal text; LIKE wildcards in it are not special.
            case_sensitive: Overrides the configured default when given.
        """
        if case_sensitive is None:
            case_sensitive = self.case_sensitive
        if case_sensitive:
            criterion = func.instr(DBNote.title, pattern) > 0
        else:
            # casefold() is registered on every connection by init_db
            criterion = func.instr(func.casefold(DBNote.title), pattern.casefold()) > 0
        return self._notes_where("search_title", criterion)

    def all_tags(self) -> List[str]:
        """Distinct tags of active notes, alphabetically."""
        with self.reading("all_tags") as session:
            rows = session.scalars(
                select(DBNoteTag.name)
                .join(DBNote, DBNote.id == DBNoteTag.note_id)
                .where(DBNote.deleted.is_(False))
                .distinct()
                .order_by(DBNoteTag.name)
            ).all()
            return list(rows)

    def all_tags_by_date(self) -> List[str]:
        """Distinct tags of active notes, most recently used first.

        A tag's date is the latest update time among the notes carrying it.
        """
        with self.reading("all_tags_by_date") as session:
            last_used = func.max(DBNote.updated_at)
            rows = session.execute(
                select(DBNoteTag.name, last_used)
                .join(DBNote, DBNote.id == DBNoteTag.note_id)
                .where(DBNote.deleted.is_(False))
                .group_by(DBNoteTag.name)
                .order_by(last_used.desc(), DBNoteTag.name)
            ).all()
            return [name for name, _ in rows]

    # ------------------------------------------------------------------
    # Tag edits
    # ------------------------------------------------------------------

    @staticmethod
    def _count_tagged(session, tag_name: str) -> int:
        return session.scalar(
            select(func.count())
            .select_from(DBNoteTag)
            .where(DBNoteTag.name == tag_name)
        ) or 0

    def rename_tag(self, old_name: str, new_name: str) -> int:
        """Rewrite ``old_name`` to ``new_name`` in every note's tag set.

        Notes that already carry ``new_name`` just lose ``old_name``, so the
        new tag appears once. Soft-deleted notes are included and no note's
        ``updated_at`` changes.

        Returns:
            Number of notes that carried ``old_name``.
        """
        if old_name == new_name:
            with self.reading("rename_tag") as session:
                return self._count_tagged(session, old_name)

        with self.transaction("rename_tag") as session:
            affected = self._count_tagged(session, old_name)
            already_tagged = select(DBNoteTag.note_id).where(
                DBNoteTag.name == new_name
            )
            session.execute(
                delete(DBNoteTag)
                .where(DBNoteTag.name == old_name)
                .where(DBNoteTag.note_id.in_(already_tagged))
                .execution_options(synchronize_session=False)
            )
            session.execute(
                update(DBNoteTag)
                .where(DBNoteTag.name == old_name)
                .values(name=new_name)
                .execution_options(synchronize_session=False)
            )
        logger.info(f"Renamed tag '{old_name}' to '{new_name}' on {affected} notes")
        return affected

    def delete_tag(self, tag_name: str) -> int:
        """Remove ``tag_name`` from every note's tag set. Notes are kept.

        Returns:
            Number of notes the tag was removed from.
        """
        with self.transaction("delete_tag") as session:
            result = session.execute(
                delete(DBNoteTag)
                .where(DBNoteTag.name == tag_name)
                .execution_options(synchronize_session=False)
            )
            removed = result.rowcount or 0
        logger.info(f"Deleted tag '{tag_name}' from {removed} notes")
        return removed

    # ------------------------------------------------------------------
    # Tag groups
    # ------------------------------------------------------------------

    @staticmethod
    def _group_to_model(db_group: DBTagGroup) -> TagGroup:
        return TagGroup(
            id=db_group.id,
            tags=json.loads(db_group.tags_json),
            protected=db_group.protected,
            created_at=ensure_timezone_aware(db_group.created_at),
            updated_at=ensure_timezone_aware(db_group.updated_at),
        )

    def save_tag_group(self, tags: List[str]) -> TagGroup:
        """Save a tag set as a group, or refresh the group that has it.

        Once there are more groups than the configured limit, the least
        recently saved unprotected groups are removed.
        """
        tags_json = json.dumps(sorted(set(tags)))
        with self.transaction("save_tag_group") as session:
            now = utc_now()
            db_group = session.scalar(
                select(DBTagGroup).where(DBTagGroup.tags_json == tags_json)
            )
            if db_group is None:
                db_group = DBTagGroup(
                    id=self.metadata.next_id(session),
                    tags_json=tags_json,
                    protected=False,
                    created_at=now,
                    updated_at=now,
                )
                session.add(db_group)
            else:
                db_group.updated_at = now
            session.flush()

            self._prune_tag_groups(session, keep_id=db_group.id)
            group = self._group_to_model(db_group)
        return group

    def _prune_tag_groups(self, session, keep_id: str) -> None:
        total = session.scalar(select(func.count(DBTagGroup.id))) or 0
        excess = total - self.tag_group_limit
        if excess <= 0:
            return
        victims = session.scalars(
            select(DBTagGroup)
            .where(DBTagGroup.protected.is_(False), DBTagGroup.id != keep_id)
            .order_by(DBTagGroup.updated_at, DBTagGroup.id)
            .limit(excess)
        ).all()
        for victim in victims:
            session.delete(victim)
        logger.debug(f"Pruned {len(victims)} tag groups")

    def get_tag_group(self, group_id: str) -> TagGroup:
        with self.reading("get_tag_group") as session:
            db_group = session.get(DBTagGroup, group_id)
            if db_group is None:
                raise TagGroupNotFoundError(group_id)
            return self._group_to_model(db_group)

    def delete_tag_group(self, group_id: str) -> None:
        """Delete a tag group.

        Raises:
            TagGroupNotFoundError: If no group has this ID.
        """
        with self.transaction("delete_tag_group") as session:
            db_group = session.get(DBTagGroup, group_id)
            if db_group is None:
                raise TagGroupNotFoundError(group_id)
            session.delete(db_group)

    def set_tag_group_protected(self, group_id: str, protected: bool) -> TagGroup:
        """Toggle whether a group is exempt from pruning."""
        with self.transaction("set_tag_group_protected") as session:
            db_group = session.get(DBTagGroup, group_id)
            if db_group is None:
                raise TagGroupNotFoundError(group_id)
            db_group.protected = protected
            session.flush()
            return self._group_to_model(db_group)

    def all_tag_groups(self) -> List[TagGroup]:
        """All tag groups, most recently saved first."""
        with self.reading("all_tag_groups") as session:
            db_groups = session.scalars(
                select(DBTagGroup).order_by(
                    DBTagGroup.updated_at.desc(), DBTagGroup.id.desc()
                )
            ).all()
            return [self._group_to_model(g) for g in db_groups]
