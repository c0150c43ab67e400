"""Six-stage pipeline executor with checkpointing by output files.

Stages run in a fixed order against one working directory. A stage that
finished is recorded by a marker file under ``.done/``; a stage with its
marker and non-trivial output is skipped, which is how a job picked up
again after a crash or a retry resumes where the previous attempt stopped.
A stage that failed halfway never gets its marker, so partial output alone
does not count. Stage failures come back as a typed error on the
result; they are never raised past the executor. Cancellation and lease
loss are not stage failures and do propagate.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Protocol, Sequence

from ..core.logging_config import redact
from ..exceptions import PipelineError, StageTimeout, StageToolFailure
from . import prompts
from .analysis_tool import AnalysisTool, StageRequest

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, str], None]

MARKER_DIR = ".done"


@dataclass(frozen=True)
class Stage:
    """One pipeline phase and the output that proves it finished."""
    index: int
    name: str
    output: str
    is_dir: bool = False

    def output_path(self, working_dir: Path) -> Path:
        return Path(working_dir) / self.output

    def marker_path(self, working_dir: Path) -> Path:
        return Path(working_dir) / MARKER_DIR / self.name

    def has_output(self, working_dir: Path) -> bool:
        """Existence alone is not enough: the file, or one markdown file in the directory, must have content."""
        path = self.output_path(working_dir)
        if self.is_dir:
            return path.is_dir() and any(_has_content(p) for p in path.glob("*.md"))
        return _has_content(path)

    def is_complete(self, working_dir: Path) -> bool:
        return self.marker_path(working_dir).is_file() and self.has_output(working_dir)

    def mark_complete(self, working_dir: Path) -> None:
        marker = self.marker_path(working_dir)
        marker.parent.mkdir(parents=True, exist_ok=True)
        marker.write_text(f"{self.index}\n", encoding="utf-8")


def _has_content(path: Path) -> bool:
    if not path.is_file():
        return False
    try:
        return bool(path.read_text(encoding="utf-8", errors="replace").strip())
    except OSError:
        return False


STAGES: Sequence[Stage] = (
    Stage(1, prompts.EXTRACT, "step1_abstractions.yaml"),
    Stage(2, prompts.ANALYZE_RELATIONSHIPS, "step2_relationships.yaml"),
    Stage(3, prompts.ORDER, "step3_order.yaml"),
    Stage(4, prompts.GENERATE_CHAPTERS, "chapters", is_dir=True),
    Stage(5, prompts.REVIEW_CHAPTERS, "reviewed-chapters", is_dir=True),
    Stage(6, prompts.GENERATE_TUTORIALS, "tutorials", is_dir=True),
)


class StageGuard(Protocol):
    """Ownership check consulted between stages (see LeaseHeartbeat)."""

    abort_event: object

    def check(self) -> None:
        ...


@dataclass
class PipelineResult:
    executed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    error: Optional[PipelineError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class PipelineExecutor:
    """Drives the analysis tool through every stage for one job."""

    def __init__(self, tool: AnalysisTool, stage_timeout: float, stages: Sequence[Stage] = STAGES):
        self.tool = tool
        self.stage_timeout = stage_timeout
        self.stages = tuple(stages)

    @property
    def total_steps(self) -> int:
        return len(self.stages)

    def execute(
        self,
        job,
        working_dir: Path,
        on_progress: ProgressCallback,
        guard: Optional[StageGuard] = None,
        repo_path: Optional[Path] = None,
    ) -> PipelineResult:
        """Run all stages not yet completed in ``working_dir``.

        Args:
            job: Supplies ``id`` and ``prompt``.
            working_dir: Where stage outputs live; kept between attempts.
            on_progress: Called with (step, total_steps, message) after every stage.
            guard: Checked before each stage that will actually run.
            repo_path: Repository checkout the tool runs in (defaults to working_dir).

        Returns:
            PipelineResult; ``error`` is set when a stage failed or timed out.

        Raises:
            JobCanceled, LeaseLost: From ``guard`` when the worker must stop.
        """
        working_dir = Path(working_dir)
        working_dir.mkdir(parents=True, exist_ok=True)
        repo_path = Path(repo_path) if repo_path is not None else working_dir
        result = PipelineResult()
        total = self.total_steps

        for stage in self.stages:
            if stage.is_complete(working_dir):
                logger.info("Stage %d/%d %s already complete, skipping", stage.index, total, stage.name)
                result.skipped.append(stage.name)
                self._notify(on_progress, stage.index, total, f"Skipped {stage.name} (output already present)")
                continue

            if guard is not None:
                guard.check()

            logger.info("Running stage %d/%d %s for job %s", stage.index, total, stage.name, job.id)
            try:
                self._run_stage(stage, job, working_dir, repo_path, guard)
            except PipelineError as e:
                logger.warning("Stage %s failed for job %s: %s", stage.name, job.id, e.message)
                result.error = e
                return result

            result.executed.append(stage.name)
            self._notify(on_progress, stage.index, total, f"Completed {stage.name}")

        return result

    def _run_stage(self, stage: Stage, job, working_dir: Path, repo_path: Path, guard: Optional[StageGuard]) -> None:
        request = StageRequest(
            stage=stage.name,
            repo_path=repo_path,
            working_dir=working_dir,
            prompt=prompts.build_stage_prompt(stage.name, job.prompt or ""),
            timeout=self.stage_timeout,
            abort_event=getattr(guard, "abort_event", None),
        )
        # A stale marker must not outlive a re-run that fails halfway.
        stage.marker_path(working_dir).unlink(missing_ok=True)
        try:
            run = self.tool.run(request)
        except OSError as e:
            raise StageToolFailure(stage.name, f"could not start analysis tool: {e}") from e

        if run.aborted:
            # Raises JobCanceled / LeaseLost when that is why the process was stopped.
            if guard is not None:
                guard.check()
            raise StageToolFailure(stage.name, "tool process was aborted", run.returncode)
        if run.timed_out:
            raise StageTimeout(stage.name, self.stage_timeout)
        if run.returncode != 0:
            reason = f"exit code {run.returncode}"
            if run.log_tail:
                reason += f": {redact(run.log_tail[-500:])}"
            raise StageToolFailure(stage.name, reason, run.returncode)
        if not stage.has_output(working_dir):
            raise StageToolFailure(stage.name, f"tool exited 0 but wrote no output to {stage.output}", 0)

        stage.mark_complete(working_dir)
        logger.info("Stage %s finished in %.1fs", stage.name, run.duration)

    def _notify(self, on_progress: ProgressCallback, step: int, total: int, message: str) -> None:
        try:
            on_progress(step, total, message)
        except Exception:
            logger.exception("Progress sink failed at step %d/%d; continuing", step, total)
