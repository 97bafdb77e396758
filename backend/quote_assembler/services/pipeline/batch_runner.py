from __future__ import annotations

import concurrent.futures
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Union

from ...utils.exceptions import ValidationError
from ...utils.logging import get_logger
from .models import AssemblyOptions, PipelineResult
from .pipeline_orchestrator import AssemblyOrchestrator
from .quote_context import QuoteContext


@dataclass(frozen=True)
class BatchJob:
    job_id: str
    template_bytes: bytes
    context: Union[QuoteContext, Mapping[str, Any]]
    options: Union[AssemblyOptions, Mapping[str, Any], None] = None


@dataclass
class BatchItemResult:
    job_id: str
    result: Optional[PipelineResult] = None
    validation_errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.result is not None and self.result.success

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "success": self.success,
            "validation_errors": self.validation_errors,
            "result": self.result.to_dict() if self.result else None,
        }


class BatchAssemblyRunner:
    """Assemble independent jobs on a bounded worker pool.

    Each job gets a fresh orchestrator, so no document or trace is shared
    between workers. With a single worker, ``throttle_seconds`` is slept
    between jobs.
    """

    def __init__(
        self,
        max_workers: int = 3,
        throttle_seconds: float = 0.0,
        orchestrator_factory: Callable[[], AssemblyOrchestrator] | None = None,
    ) -> None:
        self.logger = get_logger(__name__)
        self.max_workers = max(1, int(max_workers))
        self.throttle_seconds = max(0.0, throttle_seconds)
        self.orchestrator_factory = orchestrator_factory or AssemblyOrchestrator

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "BatchAssemblyRunner":
        defaults = AssemblyOptions.from_config(config)
        return cls(
            max_workers=int(config.get("BATCH_MAX_WORKERS", 3)),
            throttle_seconds=float(config.get("BATCH_THROTTLE_SECONDS", 0.0)),
            orchestrator_factory=lambda: AssemblyOrchestrator(options=defaults),
        )

    def _run_job(self, job: BatchJob) -> BatchItemResult:
        orchestrator = self.orchestrator_factory()
        try:
            result = orchestrator.run(job.template_bytes, job.context, job.options)
        except ValidationError as exc:
            self.logger.warning("batch job rejected", job_id=job.job_id, errors=exc.errors)
            return BatchItemResult(job_id=job.job_id, validation_errors=exc.errors)
        return BatchItemResult(job_id=job.job_id, result=result)

    def run(self, jobs: Sequence[BatchJob]) -> List[BatchItemResult]:
        """Results come back in job order regardless of completion order."""
        if not jobs:
            return []
        started = time.perf_counter()

        if self.max_workers == 1:
            results: List[BatchItemResult] = []
            for index, job in enumerate(jobs):
                if index and self.throttle_seconds:
                    time.sleep(self.throttle_seconds)
                results.append(self._run_job(job))
        else:
            with concurrent.futures.ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                results = list(executor.map(self._run_job, jobs))

        self.logger.info(
            "batch assembly finished",
            jobs=len(jobs),
            succeeded=sum(1 for item in results if item.success),
            workers=self.max_workers,
            duration_ms=round((time.perf_counter() - started) * 1000.0, 2),
        )
        return results
