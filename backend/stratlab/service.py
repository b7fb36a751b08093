"""
Strategy Service
Create, read, update, delete, clone and list strategies in a DocumentStore.
Only the owner may modify a strategy; others may read it when it is public.
"""
import logging
import time
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError

from stratlab.errors import ConfigurationError, PermissionDeniedError, StrategyNotFoundError
from stratlab.models import (
    Strategy, StrategyDraft, StrategyFilter, StrategyListItem, StrategyPage, new_id,
)
from stratlab.records import strategy_from_record, strategy_to_record
from stratlab.store import DocumentStore
from stratlab.validation import validate_strategy

logger = logging.getLogger(__name__)

COLLECTION = 'strategies'
# Identity fields are owned by the service, never by the caller
PROTECTED_FIELDS = frozenset({'id', 'userId', 'createdAt', 'updatedAt'})


def _now_ms() -> int:
    return int(time.time() * 1000)


def _list_item(strategy: Strategy) -> StrategyListItem:
    return StrategyListItem(
        id=strategy.id,
        name=strategy.name,
        description=strategy.description,
        createdAt=strategy.createdAt,
        updatedAt=strategy.updatedAt,
        userId=strategy.userId,
        isPublic=strategy.isPublic,
        tags=list(strategy.tags),
    )


def _matches(strategy: Strategy, flt: StrategyFilter) -> bool:
    if flt.isPublic is not None and strategy.isPublic != flt.isPublic:
        return False
    if flt.tags and not set(flt.tags) & set(strategy.tags):
        return False
    if flt.searchTerm and flt.searchTerm.strip():
        term = flt.searchTerm.strip().lower()
        if term not in strategy.name.lower() and term not in strategy.description.lower():
            return False
    return True


class StrategyService:
    """Strategy persistence on top of an explicitly supplied document store"""

    def __init__(self, store: DocumentStore, clock: Callable[[], int] = _now_ms):
        self.store = store
        self.clock = clock

    def _load(self, strategy_id: str) -> Strategy:
        record = self.store.get(COLLECTION, strategy_id)
        if record is None:
            raise StrategyNotFoundError(f"Strategy {strategy_id} not found")
        return strategy_from_record(record)

    def _load_owned(self, strategy_id: str, user_id: str) -> Strategy:
        strategy = self._load(strategy_id)
        if strategy.userId != user_id:
            raise PermissionDeniedError(f"Strategy {strategy_id} belongs to another user")
        return strategy

    def _save(self, strategy: Strategy) -> Strategy:
        self.store.put(COLLECTION, strategy.id, strategy_to_record(strategy))
        return strategy

    def _touch(self, previous: Strategy) -> int:
        # updatedAt must move forward even when two writes land in the same millisecond
        return max(self.clock(), previous.updatedAt + 1)

    def create_strategy(self, user_id: str, draft: StrategyDraft) -> Strategy:
        validate_strategy(draft)
        timestamp = self.clock()
        strategy = Strategy(
            **draft.model_dump(),
            id=new_id(),
            userId=user_id,
            createdAt=timestamp,
            updatedAt=timestamp,
        )
        self._save(strategy)
        logger.info("Created strategy %s (%r) for user %s", strategy.id, strategy.name, user_id)
        return strategy

    def get_strategy(self, strategy_id: str, user_id: Optional[str] = None) -> Strategy:
        strategy = self._load(strategy_id)
        if strategy.userId != user_id and not strategy.isPublic:
            raise PermissionDeniedError(f"Strategy {strategy_id} is private")
        return strategy

    def update_strategy(self, strategy_id: str, user_id: str, changes: Dict[str, Any]) -> Strategy:
        protected = PROTECTED_FIELDS & set(changes)
        if protected:
            raise ConfigurationError(f"Cannot change {', '.join(sorted(protected))}")
        unknown = set(changes) - set(StrategyDraft.model_fields)
        if unknown:
            raise ConfigurationError(f"Unknown strategy fields: {', '.join(sorted(unknown))}")

        current = self._load_owned(strategy_id, user_id)
        data = current.draft().model_dump()
        data.update(changes)
        try:
            draft = StrategyDraft.model_validate(data)
        except ValidationError as e:
            problems = [err['msg'] for err in e.errors()]
            raise ConfigurationError(f"Invalid strategy update: {'; '.join(problems)}", problems)
        validate_strategy(draft)

        updated = Strategy(
            **draft.model_dump(),
            id=current.id,
            userId=current.userId,
            createdAt=current.createdAt,
            updatedAt=self._touch(current),
        )
        self._save(updated)
        logger.info("Updated strategy %s", strategy_id)
        return updated

    def delete_strategy(self, strategy_id: str, user_id: str) -> None:
        self._load_owned(strategy_id, user_id)
        self.store.delete(COLLECTION, strategy_id)
        logger.info("Deleted strategy %s", strategy_id)

    def clone_strategy(self, strategy_id: str, user_id: str, new_name: Optional[str] = None) -> Strategy:
        """Copy a strategy the caller can read into a new strategy the caller owns"""
        source = self.get_strategy(strategy_id, user_id)
        draft = source.draft().model_copy(update={'name': new_name or f"{source.name} (copy)"})
        return self.create_strategy(user_id, draft)

    def set_visibility(self, strategy_id: str, user_id: str, is_public: bool) -> Strategy:
        current = self._load_owned(strategy_id, user_id)
        updated = current.model_copy(update={'isPublic': is_public, 'updatedAt': self._touch(current)})
        return self._save(updated)

    def _scan(self, keep: Callable[[Dict[str, Any]], bool]) -> List[Strategy]:
        """Parse the matching stored records; a malformed record is skipped, not fatal to the list"""
        strategies = []
        for record in self.store.scan(COLLECTION):
            if not keep(record):
                continue
            try:
                strategies.append(strategy_from_record(record))
            except ConfigurationError as e:
                logger.warning("Skipping malformed strategy record %s: %s", record.get('id'), e)
        return strategies

    def _page(self, strategies: List[Strategy], flt: StrategyFilter,
              cursor: Optional[str], page_size: int) -> StrategyPage:
        if page_size < 1:
            raise ConfigurationError("page_size must be at least 1")

        matched = [s for s in strategies if _matches(s, flt)]
        matched.sort(
            key=lambda s: (s.name.lower() if flt.sortBy == 'name' else getattr(s, flt.sortBy), s.id),
            reverse=flt.sortOrder == 'desc',
        )

        start = 0
        if cursor is not None:
            ids = [s.id for s in matched]
            if cursor not in ids:
                raise ConfigurationError(f"Unknown cursor {cursor!r}")
            start = ids.index(cursor) + 1

        page = matched[start:start + page_size]
        has_more = start + page_size < len(matched)
        return StrategyPage(
            items=[_list_item(s) for s in page],
            cursor=page[-1].id if page and has_more else None,
        )

    def list_strategies(self, user_id: str, flt: Optional[StrategyFilter] = None,
                        cursor: Optional[str] = None, page_size: int = 10) -> StrategyPage:
        """The caller's own strategies"""
        owned = self._scan(lambda r: r.get('userId') == user_id)
        return self._page(owned, flt or StrategyFilter(), cursor, page_size)

    def list_public_strategies(self, flt: Optional[StrategyFilter] = None,
                               cursor: Optional[str] = None, page_size: int = 10) -> StrategyPage:
        """Every user's public strategies"""
        flt = (flt or StrategyFilter()).model_copy(update={'isPublic': True})
        public = self._scan(lambda r: bool(r.get('isPublic')))
        return self._page(public, flt, cursor, page_size)
