"""Execute highlight interactions against storage.

One engine serves one reader on one document (or chapter).  Each
interaction runs Idle -> Classifying -> one mutation path -> Idle:

1. ``reconcile`` anchors the selection in the projection
2. ``classify_all`` relates it to the reader's stored highlights
3. ``plan_mutation`` picks Create, AlreadyHighlighted, Shrink, Split or Merge
4. the plan is executed delete-then-create

The registry only changes after storage confirms each step.  At most one
mutation is in flight; interactions that arrive while one is pending are
ignored.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from marginalia.errors import PersistenceFailure, ReconciliationFailure
from marginalia.highlighting.classify import RelationKind, classify_all
from marginalia.highlighting.mutations import (
    MutationAction,
    MutationPlan,
    plan_mutation,
)
from marginalia.input_pipeline.projection import project
from marginalia.llm.suggestions import Suggestion, is_covered
from marginalia.models import HighlightDraft, Selection

if TYPE_CHECKING:
    from uuid import UUID

    from marginalia.highlighting.classify import Classification
    from marginalia.highlighting.registry import HighlightRegistry
    from marginalia.input_pipeline.projection import Projection
    from marginalia.models import Document, DocumentKey, Highlight
    from marginalia.store.protocol import HighlightStore

logger = logging.getLogger(__name__)


@dataclass
class MutationResult:
    """Outcome of one executed plan.

    Attributes:
        action: The mutation path taken.
        deleted: Ids storage confirmed as deleted.
        created: Records storage confirmed as created.
        target_ids: Highlights the interaction was about (for
            AlreadyHighlighted, the one the reader may delete).
        error: The storage failure that stopped execution, if any.
    """

    action: MutationAction
    deleted: list[UUID] = field(default_factory=list)
    created: list[Highlight] = field(default_factory=list)
    target_ids: tuple[UUID, ...] = ()
    error: PersistenceFailure | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class HighlightEngine:
    """Position-aware highlight engine for one reader and one document.

    Args:
        store: Storage backend (create/delete plus read queries).
        registry: The owned highlight collection; shared by reference with
            the renderer and library views.
        owner_id: The reader whose highlights are being edited.
        document: The document (or chapter) being read.
    """

    def __init__(
        self,
        store: HighlightStore,
        registry: HighlightRegistry,
        owner_id: UUID,
        document: Document,
    ) -> None:
        self.store = store
        self.registry = registry
        self.owner_id = owner_id
        self.document = document
        self.projection: Projection = project(document.content)
        self.busy = False
        self.pending_repairs: list[MutationPlan] = []

    @property
    def document_key(self) -> DocumentKey:
        return self.document.key

    @property
    def highlights(self) -> list[Highlight]:
        return self.registry.for_document(self.document_key)

    async def load(self) -> list[Highlight]:
        """Read the reader's highlights for this document into the registry."""
        document_id, sub_document_id = self.document_key
        highlights = await self.store.list_for_document(
            self.owner_id, document_id, sub_document_id
        )
        self.registry.load(self.document_key, highlights)
        return highlights

    # -- Classification -----------------------------------------------------

    def inspect(self, selection: Selection) -> Classification:
        """Classify a selection against the stored highlights.

        Used to decide which actions to offer in the selection menu.

        Raises:
            ReconciliationFailure: The selected text is not in the projection.
        """
        classification = classify_all(self.highlights, selection, self.projection)
        if classification.candidate_span is None:
            raise ReconciliationFailure(selection.text)
        if classification.kind is RelationKind.NONE:
            logger.debug("Selection %r relates to no highlight", selection.text[:40])
        return classification

    def plan(self, selection: Selection, note: str | None = None) -> MutationPlan:
        """Plan the mutation for a selection without executing it.

        Raises:
            ReconciliationFailure: The selection cannot be anchored, or holds
                only whitespace.
        """
        classification = self.inspect(selection)
        plan = plan_mutation(
            classification, self.projection, self.owner_id, self.document_key, note
        )
        if plan is None:
            raise ReconciliationFailure(selection.text)
        return plan

    # -- Mutations ----------------------------------------------------------

    async def submit(
        self, selection: Selection, note: str | None = None
    ) -> MutationResult | None:
        """Run one selection through classification and its mutation path.

        Returns:
            The result, or None if the engine was busy or the selection could
            not be anchored.
        """
        if self.busy:
            logger.debug("Mutation in flight; ignoring selection")
            return None
        try:
            plan = self.plan(selection, note)
        except ReconciliationFailure as exc:
            logger.info("Rejected selection: %s", exc)
            return None
        return await self._run(plan)

    async def delete(self, highlight_id: UUID) -> bool:
        """Delete one highlight (the AlreadyHighlighted action)."""
        if self.busy:
            return False
        plan = MutationPlan(
            MutationAction.ALREADY_HIGHLIGHTED,
            delete_ids=(highlight_id,),
            target_ids=(highlight_id,),
        )
        result = await self._run(plan)
        return highlight_id in result.deleted

    async def delete_group(self, highlight_ids: list[UUID]) -> int:
        """Delete several highlights in order; returns how many were removed."""
        if self.busy or not highlight_ids:
            return 0
        plan = MutationPlan(
            MutationAction.ALREADY_HIGHLIGHTED,
            delete_ids=tuple(highlight_ids),
            target_ids=tuple(highlight_ids),
        )
        result = await self._run(plan)
        return len(result.deleted)

    async def set_note(self, highlight_id: UUID, note: str | None) -> Highlight | None:
        """Replace a highlight's note.

        Storage has no update, so the record is deleted and re-created over
        the same span.
        """
        if self.busy:
            return None
        existing = self.registry.get(highlight_id)
        if existing is None:
            logger.warning("No highlight %s to annotate", highlight_id)
            return None
        draft = HighlightDraft(
            owner_id=existing.owner_id,
            document_id=existing.document_id,
            sub_document_id=existing.sub_document_id,
            selected_text=existing.selected_text,
            start_offset=existing.start_offset,
            end_offset=existing.end_offset,
            note=note or None,
        )
        plan = MutationPlan(
            MutationAction.CREATE,
            delete_ids=(highlight_id,),
            drafts=(draft,),
            target_ids=(highlight_id,),
        )
        result = await self._run(plan)
        return result.created[0] if result.created else None

    async def accept_suggestion(self, suggestion: Suggestion) -> Highlight | None:
        """Store an AI suggestion unless it is already highlighted.

        Suggestions only take the Create path: a suggestion covered by (or
        identical to) a stored highlight is skipped.
        """
        if self.busy:
            return None
        if is_covered(suggestion.text, self.highlights):
            logger.debug("Suggestion %r already highlighted", suggestion.text[:40])
            return None
        try:
            classification = self.inspect(Selection(text=suggestion.text))
        except ReconciliationFailure as exc:
            logger.info("Discarding suggestion: %s", exc)
            return None
        if classification.kind is RelationKind.EXACT:
            return None
        span = classification.candidate_span
        if span is None:
            return None
        document_id, sub_document_id = self.document_key
        draft = HighlightDraft(
            owner_id=self.owner_id,
            document_id=document_id,
            sub_document_id=sub_document_id,
            selected_text=self.projection.slice(span),
            start_offset=span.start,
            end_offset=span.end,
            note=suggestion.reason or None,
        )
        result = await self._run(MutationPlan(MutationAction.CREATE, drafts=(draft,)))
        return result.created[0] if result.created else None

    async def retry_repairs(self) -> list[Highlight]:
        """Re-run the unfinished remainder of partially failed mutations."""
        if self.busy or not self.pending_repairs:
            return []
        repairs, self.pending_repairs = self.pending_repairs, []
        created: list[Highlight] = []
        for plan in repairs:
            result = await self._run(plan)
            created.extend(result.created)
        return created

    # -- Execution ----------------------------------------------------------

    async def _run(self, plan: MutationPlan) -> MutationResult:
        self.busy = True
        try:
            return await self._execute(plan)
        finally:
            self.busy = False

    async def _execute(self, plan: MutationPlan) -> MutationResult:
        """Delete then create, applying each confirmed step to the registry.

        On a storage failure, execution stops.  If earlier steps already
        succeeded, the remaining steps are queued on ``pending_repairs``.
        """
        result = MutationResult(plan.action, target_ids=plan.target_ids)

        for index, highlight_id in enumerate(plan.delete_ids):
            try:
                await self.store.delete(highlight_id)
            except PersistenceFailure as exc:
                logger.exception("Failed to delete highlight %s", highlight_id)
                result.error = exc
                self._queue_repair(
                    result, plan, plan.delete_ids[index:], plan.drafts
                )
                return result
            self.registry.remove(highlight_id)
            result.deleted.append(highlight_id)

        for index, draft in enumerate(plan.drafts):
            try:
                highlight = await self.store.create(draft)
            except PersistenceFailure as exc:
                logger.exception(
                    "Failed to create highlight over [%d, %d)",
                    draft.start_offset,
                    draft.end_offset,
                )
                result.error = exc
                self._queue_repair(result, plan, (), plan.drafts[index:])
                return result
            self.registry.add(highlight)
            result.created.append(highlight)

        if plan.changes_storage:
            logger.info(
                "%s: deleted %d, created %d highlight(s)",
                plan.action,
                len(result.deleted),
                len(result.created),
            )
        return result

    def _queue_repair(
        self,
        result: MutationResult,
        plan: MutationPlan,
        delete_ids: tuple[UUID, ...],
        drafts: tuple[HighlightDraft, ...],
    ) -> None:
        # Nothing confirmed yet: local state is unchanged, nothing to repair
        if not result.deleted and not result.created:
            return
        self.pending_repairs.append(
            MutationPlan(plan.action, delete_ids=delete_ids, drafts=drafts)
        )
        logger.warning(
            "%s partially applied; %d delete(s) and %d create(s) pending repair",
            plan.action,
            len(delete_ids),
            len(drafts),
        )
