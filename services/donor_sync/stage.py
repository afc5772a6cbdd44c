"""
Generic get-or-create reconciliation over one Mollie resource kind.

A stage works in two independent phases:

1. fetch_existing: look up what Mollie already has for the inputs
2. create_missing: create the resource for inputs that were not found

The pipeline computes "still missing" as a plain set difference between the
two, which makes every stage idempotent: a second run finds everything in
phase 1 and creates nothing in phase 2.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Generic, Hashable, Iterable, List, Optional, Set, TypeVar

import structlog

from .client import MollieAPIError
from .log_config import log_processing_batch
from .matching import SelectionPolicy
from .models import DonorRecord

logger = structlog.get_logger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")
InputT = TypeVar("InputT")
RemoteT = TypeVar("RemoteT")


class DuplicateKeyError(Exception):
    """A second remote entity was recorded for a key that already has one."""

    def __init__(self, kind: str, key: Any):
        super().__init__(f"{kind}: a value is already recorded for {key!r}")
        self.kind = kind
        self.key = key


class ReconciliationMap(Dict[K, V]):
    """
    Mapping from local donor to at most one remote entity.

    Keys never receive a second value: add() and item assignment raise
    DuplicateKeyError instead of overwriting.
    """

    def __init__(self, kind: str = "entity", items: Optional[Iterable] = None):
        super().__init__()
        self.kind = kind
        for key, value in items or ():
            self.add(key, value)

    def add(self, key: K, value: V) -> None:
        if key in self:
            raise DuplicateKeyError(self.kind, key)
        super().__setitem__(key, value)

    def __setitem__(self, key: K, value: V) -> None:
        self.add(key, value)

    def update(self, *args, **kwargs) -> None:
        for key, value in dict(*args, **kwargs).items():
            self.add(key, value)

    def setdefault(self, key, default=None):
        if key not in self:
            self.add(key, default)
        return self[key]

    def __ior__(self, other):
        self.update(other)
        return self

    @classmethod
    def merge(cls, *maps: "ReconciliationMap", kind: Optional[str] = None) -> "ReconciliationMap":
        """Combine maps with disjoint keys; overlapping keys raise DuplicateKeyError."""
        kind = kind or (maps[0].kind if maps else "entity")
        merged = cls(kind)
        for mapping in maps:
            for key, value in mapping.items():
                merged.add(key, value)
        return merged


@dataclass
class ItemResult(Generic[InputT, RemoteT]):
    """Outcome of one remote call for one input."""
    item: InputT
    value: Optional[RemoteT] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class BatchResult(Generic[K, RemoteT]):
    """Created entities plus the inputs whose create call failed."""
    entities: ReconciliationMap
    failures: List[ItemResult] = field(default_factory=list)

    @property
    def created(self) -> int:
        return len(self.entities)

    @property
    def failed(self) -> int:
        return len(self.failures)


@dataclass
class StageOutcome(Generic[K, RemoteT]):
    """Everything one stage learned and did during a run."""
    found: ReconciliationMap
    created: ReconciliationMap
    failures: List[ItemResult] = field(default_factory=list)
    unresolved: Set[Any] = field(default_factory=set)

    @property
    def combined(self) -> ReconciliationMap:
        return ReconciliationMap.merge(self.found, self.created)


@dataclass(frozen=True)
class StageConfig:
    """
    Per-run options shared by all stages.

    Built once from the service settings and handed to every stage.
    """
    customer_page_size: int = 250
    selection_policy: SelectionPolicy = SelectionPolicy.FIRST
    max_concurrency: int = 1
    subscription_description: str = ""
    webhook_url: str = ""
    subscription_interval: str = "1 month"

    @classmethod
    def from_settings(cls, config) -> "StageConfig":
        return cls(
            customer_page_size=config.customer_page_size,
            selection_policy=SelectionPolicy(config.selection_policy),
            max_concurrency=config.create_concurrency,
            subscription_description=config.subscription_description or "",
            webhook_url=config.webhook_url or "",
        )


class ReconcileStage(ABC, Generic[InputT, RemoteT]):
    """
    Idempotent get-or-create for one resource kind.

    Subclasses provide:
    - key(item): the DonorRecord an input stands for
    - _find_existing(inputs): lookup of existing remote entities
    - _create(item): one create call
    """

    kind: str = "entity"

    def __init__(self, client, config: Optional[StageConfig] = None):
        self.client = client
        self.config = config or StageConfig()
        # Keys whose lookup was ambiguous during the last fetch_existing
        self.unresolved: Set[DonorRecord] = set()

    def key(self, item: InputT) -> DonorRecord:
        return item

    @abstractmethod
    async def _find_existing(self, inputs: List[InputT]) -> ReconciliationMap:
        """Remote entities already satisfying the inputs, keyed by donor."""
        ...

    @abstractmethod
    async def _create(self, item: InputT) -> RemoteT:
        """One create call; MollieAPIError marks the item failed."""
        ...

    async def fetch_existing(self, inputs: Iterable[InputT]) -> ReconciliationMap:
        """
        Look up remote entities that already satisfy the inputs.

        A provider failure degrades to "nothing found" and is logged; it never
        propagates.
        """
        inputs = list(inputs)
        self.unresolved = set()

        try:
            found = await self._find_existing(inputs)
        except MollieAPIError as e:
            logger.error(
                f"failed {self.kind} retrieval",
                kind=self.kind,
                error=str(e),
                error_type=type(e).__name__,
            )
            return ReconciliationMap(self.kind)

        logger.debug(f"{self.kind} lookup finished", inputs=len(inputs), found=len(found))
        return found

    def pending(self, inputs: Iterable[InputT], found: ReconciliationMap) -> List[InputT]:
        """Inputs not covered by found, excluding ambiguous ones."""
        return [
            item for item in inputs
            if self.key(item) not in found and self.key(item) not in self.unresolved
        ]

    async def _attempt(self, item: InputT) -> ItemResult:
        try:
            value = await self._create(item)
        except MollieAPIError as e:
            record = self.key(item)
            logger.error(
                f"failed {self.kind} creation",
                kind=self.kind,
                donor=record.describe(),
                email=record.email,
                error=str(e),
            )
            return ItemResult(item=item, error=e)
        return ItemResult(item=item, value=value)

    async def _attempt_all(self, items: List[InputT]) -> List[ItemResult]:
        if self.config.max_concurrency <= 1:
            return [await self._attempt(item) for item in items]

        semaphore = asyncio.Semaphore(self.config.max_concurrency)

        async def bounded(item: InputT) -> ItemResult:
            async with semaphore:
                return await self._attempt(item)

        return list(await asyncio.gather(*(bounded(item) for item in items)))

    async def create_missing(self, inputs: Iterable[InputT]) -> BatchResult:
        """
        Create the remote entity for every input.

        A failed create only skips that input; the others continue.
        """
        items = list(inputs)
        start = time.monotonic()

        entities = ReconciliationMap(self.kind)
        failures: List[ItemResult] = []
        for result in await self._attempt_all(items):
            if result.ok:
                entities.add(self.key(result.item), result.value)
            else:
                failures.append(result)

        if items:
            log_processing_batch(
                logger,
                batch_id=f"create_{self.kind}s",
                items_processed=len(entities),
                items_failed=len(failures),
                duration_ms=(time.monotonic() - start) * 1000,
            )

        return BatchResult(entities=entities, failures=failures)

    async def reconcile(self, inputs: Iterable[InputT]) -> StageOutcome:
        """Fetch, create what is missing, and report both."""
        inputs = list(inputs)
        found = await self.fetch_existing(inputs)
        batch = await self.create_missing(self.pending(inputs, found))
        return StageOutcome(
            found=found,
            created=batch.entities,
            failures=batch.failures,
            unresolved=set(self.unresolved),
        )
