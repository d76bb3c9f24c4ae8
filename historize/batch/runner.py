"""
Multi-entity runner.

Entities write disjoint tables, so their pipelines can run concurrently.
A fatal error in one entity is recorded and does not stop the others.
"""

import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping

from historize.core.errors import ConfigurationError, HistorizeError
from historize.core.models import EntityConfig, RunSummary
from historize.observability.logger import get_logger
from historize.warehouse.store import TableStore

from .pipeline import EntityPipeline

logger = get_logger(__name__)

RowSource = Callable[[], Iterable[Mapping[str, Any]]]


@dataclass
class RunReport:
    """Summaries of every entity run plus the fatal errors, keyed by entity."""

    summaries: list[RunSummary] = field(default_factory=list)
    errors: dict[str, HistorizeError] = field(default_factory=dict)

    @property
    def failed(self) -> bool:
        return bool(self.errors)

    @property
    def rejected(self) -> int:
        return sum(summary.rejected for summary in self.summaries)

    def summary_for(self, entity: str) -> RunSummary | None:
        return next((s for s in self.summaries if s.entity == entity), None)


def run_entity(
    config: EntityConfig,
    store: TableStore,
    source: RowSource,
    dry_run: bool = False,
    sleep: Callable[[float], None] = time.sleep,
) -> RunSummary:
    """Run one entity's pipeline over the rows its source produces."""
    pipeline = EntityPipeline(config, store, dry_run=dry_run, sleep=sleep)
    first_line = 2 if config.source.header else 1
    return pipeline.run(source(), first_line=first_line)


def run_entities(
    configs: list[EntityConfig],
    store: TableStore,
    sources: dict[str, RowSource],
    max_workers: int = 1,
    dry_run: bool = False,
    sleep: Callable[[float], None] = time.sleep,
) -> RunReport:
    """
    Run several entities, concurrently when ``max_workers`` > 1.

    Args:
        configs: Entities to run, in declaration order
        store: Table store shared by every entity
        sources: Row source per entity name, called once when the entity starts
        max_workers: Maximum entities running at the same time
        dry_run: Plan and report without committing
        sleep: Backoff sleep, injectable for tests

    Returns:
        RunReport with summaries in declaration order
    """
    report = RunReport()
    results: dict[str, RunSummary] = {}

    def _run(config: EntityConfig) -> RunSummary:
        source = sources.get(config.name)
        if source is None:
            raise ConfigurationError(config.name, "No source rows available for entity")
        return run_entity(config, store, source, dry_run=dry_run, sleep=sleep)

    with ThreadPoolExecutor(max_workers=max(1, max_workers), thread_name_prefix="historize") as executor:
        futures = {executor.submit(_run, config): config for config in configs}
        for future in as_completed(futures):
            config = futures[future]
            try:
                results[config.name] = future.result()
            except HistorizeError as e:
                logger.error(
                    f"Entity {config.name} failed: {e}",
                    extra={"entity": config.name, "failure_kind": getattr(e, "kind", type(e).__name__)},
                )
                report.errors[config.name] = e
                results[config.name] = RunSummary(
                    entity=config.name,
                    status="failed",
                    attempts=getattr(e, "attempts", 0),
                    error=str(e),
                )

    report.summaries = [results[config.name] for config in configs]
    return report
