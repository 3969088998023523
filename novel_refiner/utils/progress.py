from typing import Optional

from loguru import logger
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn, TimeElapsedColumn

from ..collaborators import ProgressCallback


def notify(progress: Optional[ProgressCallback], message: str, percent: float):
    """Invoke a progress callback; its exceptions are logged and ignored."""
    if progress is None:
        return
    try:
        progress(message, percent)
    except Exception as e:
        logger.warning(f"Progress callback raised, ignoring: {e}")


def scaled(progress: Optional[ProgressCallback], offset: float, parts: int) -> Optional[ProgressCallback]:
    """Map a nested run's 0-100 progress onto one of ``parts`` slices starting at ``offset``."""
    if progress is None:
        return None

    def callback(message: str, percent: float):
        notify(progress, message, offset + percent / parts)

    return callback


def create_progress() -> Progress:
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        TimeElapsedColumn(),
    )


class RichProgress:
    """Context manager that renders ``(message, percent)`` callbacks as a rich bar.

        with RichProgress("Optimizing") as bar:
            controller.optimize(document, "tension", progress=bar)
    """

    def __init__(self, description: str = "Processing..."):
        self.description = description
        self._progress = create_progress()
        self._task_id = None

    def __enter__(self) -> "RichProgress":
        self._progress.__enter__()
        self._task_id = self._progress.add_task(self.description, total=100)
        return self

    def __exit__(self, *exc):
        return self._progress.__exit__(*exc)

    def __call__(self, message: str, percent: float):
        # Percentages are not guaranteed to be monotonic.
        self._progress.update(
            self._task_id,
            completed=max(0.0, min(100.0, percent)),
            description=f"{self.description}: {message}",
        )
