# session_engine/logic/categories.py
"""
Category lookups for the session engine.

The category store owns the user's app/bundle/domain -> category mappings.
CategoryLookupCache takes an immutable snapshot of them once per aggregation
run so every boundary decision in that run sees the same mappings.
"""

import json
import logging
import re
import threading
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

from pydantic import ValidationError

from session_engine.exceptions import CategoryStoreError
from session_engine.logic.context_extractor import extract_domain
from session_engine.models import (
    ActivityEvent,
    AppCategoryRow,
    CategorySuggestion,
    DomainCategoryRow,
)

log = logging.getLogger(__name__)


class CategoryStore(Protocol):
    def list_app_categories(self) -> Sequence[AppCategoryRow]: ...

    def list_domain_categories(self) -> Sequence[DomainCategoryRow]: ...


class SuggestionSink(Protocol):
    def record(self, kind: str, value: str, suggested_category: str, confidence: Optional[float]) -> None: ...


class InMemoryCategoryStore:
    """Category store backed by plain lists; mostly useful for tests and embedding."""

    def __init__(self, apps: Sequence[AppCategoryRow] = (), domains: Sequence[DomainCategoryRow] = ()):
        self.apps = list(apps)
        self.domains = list(domains)

    def list_app_categories(self) -> List[AppCategoryRow]:
        return list(self.apps)

    def list_domain_categories(self) -> List[DomainCategoryRow]:
        return list(self.domains)


class JsonCategoryStore:
    """
    Category store reading a JSON document of the form
    {"apps": [{"appName": ..., "bundleId": ..., "category": ...}],
     "domains": [{"domain": ..., "pattern": ..., "category": ...}]}.
    The file is re-read on every call so edits are picked up by the next refresh.
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def _load(self) -> dict:
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise CategoryStoreError(f"Cannot read category file {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise CategoryStoreError(f"Category file {self.path} must contain a JSON object")
        return data

    def list_app_categories(self) -> List[AppCategoryRow]:
        try:
            return [AppCategoryRow.model_validate(row) for row in self._load().get("apps", [])]
        except ValidationError as e:
            raise CategoryStoreError(f"Invalid app category row in {self.path}: {e}") from e

    def list_domain_categories(self) -> List[DomainCategoryRow]:
        try:
            return [DomainCategoryRow.model_validate(row) for row in self._load().get("domains", [])]
        except ValidationError as e:
            raise CategoryStoreError(f"Invalid domain category row in {self.path}: {e}") from e


def compile_domain_pattern(pattern: str) -> re.Pattern:
    """'*.github.com' -> anchored, case-insensitive regex; '*' is any run, '.' is literal."""
    escaped = ".*".join(re.escape(part) for part in pattern.split("*"))
    return re.compile(f"^{escaped}$", re.IGNORECASE)


@dataclass(frozen=True)
class CategorySnapshot:
    """Read-only lookup structures built from one read of the category store."""
    apps: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    bundles: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    domains: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    domain_patterns: Tuple[Tuple[re.Pattern, str], ...] = ()

    @classmethod
    def build(cls, app_rows: Sequence[AppCategoryRow], domain_rows: Sequence[DomainCategoryRow]) -> "CategorySnapshot":
        apps: Dict[str, str] = {}
        bundles: Dict[str, str] = {}
        domains: Dict[str, str] = {}
        patterns: List[Tuple[re.Pattern, str]] = []

        for row in app_rows:
            apps[row.app_name] = row.category
            if row.bundle_id:
                bundles[row.bundle_id] = row.category

        for row in domain_rows:
            domains[row.domain] = row.category
            if row.pattern:
                patterns.append((compile_domain_pattern(row.pattern), row.category))

        return cls(
            apps=MappingProxyType(apps),
            bundles=MappingProxyType(bundles),
            domains=MappingProxyType(domains),
            domain_patterns=tuple(patterns),
        )

    @property
    def is_empty(self) -> bool:
        return not (self.apps or self.bundles or self.domains or self.domain_patterns)

    def category_for(self, event: ActivityEvent) -> Optional[str]:
        """Bundle id, then app name, then exact domain, then wildcard patterns in order."""
        if event.bundle_id:
            by_bundle = self.bundles.get(event.bundle_id)
            if by_bundle:
                return by_bundle

        by_app = self.apps.get(event.app_name)
        if by_app:
            return by_app

        if event.url:
            domain = extract_domain(event.url)
            if domain:
                by_domain = self.domains.get(domain)
                if by_domain:
                    return by_domain
                for regex, category in self.domain_patterns:
                    if regex.match(domain):
                        return category

        return None


EMPTY_SNAPSHOT = CategorySnapshot()


class CategoryLookupCache:
    """Holds the current CategorySnapshot and swaps in a new one on refresh()."""

    def __init__(self, store: Optional[CategoryStore] = None):
        self.store = store
        self._snapshot: CategorySnapshot = EMPTY_SNAPSHOT

    @property
    def snapshot(self) -> CategorySnapshot:
        return self._snapshot

    def refresh(self) -> CategorySnapshot:
        """
        Rebuilds the snapshot from the store. On failure the previous snapshot
        (empty on first use) stays in place; this never raises.
        """
        if self.store is None:
            log.debug("No category store configured; category lookups stay empty.")
            return self._snapshot
        try:
            app_rows = self.store.list_app_categories()
            domain_rows = self.store.list_domain_categories()
            snapshot = CategorySnapshot.build(app_rows, domain_rows)
        except Exception as e:
            log.warning(f"Category store unavailable, keeping previous lookup snapshot: {e}")
            return self._snapshot

        self._snapshot = snapshot
        log.info(
            f"Category lookup refreshed: {len(snapshot.apps)} apps, {len(snapshot.bundles)} bundles, "
            f"{len(snapshot.domains)} domains, {len(snapshot.domain_patterns)} patterns."
        )
        return snapshot

    def category_for(self, event: ActivityEvent) -> Optional[str]:
        return self._snapshot.category_for(event)


class CategorySuggestionBook:
    """
    In-memory sink for AI category suggestions awaiting user review.
    One pending suggestion per (kind, value); repeats bump its occurrence count.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._pending: Dict[Tuple[str, str], CategorySuggestion] = {}

    def record(self, kind: str, value: str, suggested_category: str, confidence: Optional[float] = None) -> None:
        key = (kind, value)
        with self._lock:
            existing = self._pending.get(key)
            if existing:
                self._pending[key] = existing.model_copy(update={
                    "occurrence_count": existing.occurrence_count + 1,
                    "suggested_category": suggested_category,
                    "confidence": confidence,
                })
            else:
                self._pending[key] = CategorySuggestion(
                    kind=kind,
                    value=value,
                    suggested_category=suggested_category,
                    confidence=confidence,
                )
        log.debug(f"Recorded category suggestion {kind}:{value} -> {suggested_category} ({confidence})")

    def pending(self) -> List[CategorySuggestion]:
        with self._lock:
            items = list(self._pending.values())
        return sorted(items, key=lambda s: s.occurrence_count, reverse=True)

    def __len__(self) -> int:
        return len(self._pending)
