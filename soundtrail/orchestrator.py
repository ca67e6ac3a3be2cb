"""
Batch classification orchestrator.

Drives the cascade over every unique artist in fixed-size concurrent
batches. A checkpoint is written after each batch so a cancelled or crashed
run can resume without re-classifying anything already done.
"""
import asyncio
import logging
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional

from .classifier import STATUS_COMPLETE, CancellationToken, GenreClassifier
from .errors import ClassificationCancelled
from .genre.heuristics import classify_by_heuristics
from .logging_utils import ProgressLogger, RunSummary
from .models import CHECKPOINT_ID, ClassificationCheckpoint, ProgressEvent
from .storage import PROGRESS, HistoryStore

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressEvent], None]
BatchCallback = Callable[[Dict[str, List[str]]], None]


class ClassificationState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


_TRANSITIONS = {
    ClassificationState.IDLE: {ClassificationState.RUNNING},
    ClassificationState.RUNNING: {
        ClassificationState.COMPLETED,
        ClassificationState.CANCELLED,
        ClassificationState.FAILED,
    },
    ClassificationState.COMPLETED: {ClassificationState.RUNNING},
    ClassificationState.CANCELLED: {ClassificationState.RUNNING},
    ClassificationState.FAILED: {ClassificationState.RUNNING},
}


class CheckpointStore:
    """Persists the single classification checkpoint record"""

    def __init__(self, store: HistoryStore):
        self.store = store

    def save(self, checkpoint: ClassificationCheckpoint) -> None:
        self.store.put(PROGRESS, checkpoint.to_dict())

    def load(self) -> Optional[ClassificationCheckpoint]:
        record = self.store.get(PROGRESS, CHECKPOINT_ID)
        return ClassificationCheckpoint.from_dict(record) if record else None

    def resumable(self) -> Optional[ClassificationCheckpoint]:
        """The stored checkpoint, if it describes an unfinished run"""
        checkpoint = self.load()
        if checkpoint is not None and checkpoint.is_resumable:
            return checkpoint
        return None

    def clear(self) -> None:
        self.store.delete(PROGRESS, CHECKPOINT_ID)


def _unique(artists: Iterable[str]) -> List[str]:
    seen = set()
    result = []
    for artist in artists:
        if artist not in seen:
            seen.add(artist)
            result.append(artist)
    return result


class BatchClassifier:
    """Resumable, cancellable batch runner around GenreClassifier"""

    def __init__(
        self,
        classifier: GenreClassifier,
        checkpoints: CheckpointStore,
        concurrency: int = 5,
        batch_delay: float = 0.1,
    ):
        if concurrency <= 0:
            raise ValueError("concurrency must be positive")
        self.classifier = classifier
        self.checkpoints = checkpoints
        self.concurrency = concurrency
        self.batch_delay = batch_delay
        self.state = ClassificationState.IDLE

    def _transition(self, new_state: ClassificationState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"Invalid classification state change: {self.state.value} -> {new_state.value}")
        logger.debug(f"Classification state: {self.state.value} -> {new_state.value}")
        self.state = new_state

    async def _classify_one(
        self,
        artist: str,
        token: CancellationToken,
        on_progress: Optional[ProgressCallback],
    ) -> List[str]:
        try:
            result = await self.classifier.classify(artist, token, on_progress)
            return result.genres
        except ClassificationCancelled:
            raise
        except Exception as e:
            logger.error(f"Failed to classify {artist}: {e}")
            return classify_by_heuristics(artist)

    def _checkpoint(
        self,
        results: Dict[str, List[str]],
        total: int,
        cancelled: bool = False,
    ) -> ClassificationCheckpoint:
        checkpoint = ClassificationCheckpoint(
            results=dict(results),
            current_index=len(results),
            total=total,
            cancelled=cancelled,
        )
        self.checkpoints.save(checkpoint)
        return checkpoint

    async def run(
        self,
        artists: Iterable[str],
        on_progress: Optional[ProgressCallback] = None,
        on_batch_complete: Optional[BatchCallback] = None,
        token: Optional[CancellationToken] = None,
        resume: Optional[ClassificationCheckpoint] = None,
    ) -> Dict[str, List[str]]:
        """
        Classify every unique artist

        Args:
            artists: Artist names, duplicates allowed
            on_progress: Per-artist progress events (with current/total once an artist completes)
            on_batch_complete: Called with the accumulated results after each batch
            token: Cancellation token shared with every in-flight cascade
            resume: Checkpoint from an earlier run; its artists are not reclassified

        Returns:
            artist -> genres for every unique artist

        Raises:
            ClassificationCancelled: after the resumable checkpoint has been written
        """
        self._transition(ClassificationState.RUNNING)
        token = token or CancellationToken()
        unique_artists = _unique(artists)
        total = len(unique_artists)

        results: Dict[str, List[str]] = {}
        if resume is not None:
            results.update({a: list(g) for a, g in resume.results.items()})
            logger.info(f"Resuming classification: {len(results):,}/{total:,} artists already done")
        remaining = [a for a in unique_artists if a not in results]

        summary = RunSummary("Genre Classification Summary", logger)
        summary.add("artists", total)
        summary.add("resumed", len(results))
        progress = ProgressLogger(logger, total=len(remaining), label="Classifying artists", unit="artists")

        try:
            for start in range(0, len(remaining), self.concurrency):
                token.raise_if_cancelled()
                batch = remaining[start:start + self.concurrency]
                tasks = [
                    asyncio.ensure_future(self._classify_one(artist, token, on_progress))
                    for artist in batch
                ]
                try:
                    batch_genres = await asyncio.gather(*tasks)
                except ClassificationCancelled:
                    # keep whatever finished before the cancellation was noticed
                    await asyncio.gather(*tasks, return_exceptions=True)
                    for artist, task in zip(batch, tasks):
                        if not task.cancelled() and task.exception() is None:
                            results[artist] = task.result()
                    raise

                for artist, genres in zip(batch, batch_genres):
                    results[artist] = genres
                    if on_progress is not None:
                        on_progress(ProgressEvent(
                            artist=artist,
                            status=STATUS_COMPLETE,
                            genres=genres,
                            current=len(results),
                            total=total,
                        ))
                progress.update(len(batch))

                self._checkpoint(results, total)
                if on_batch_complete is not None:
                    on_batch_complete(dict(results))
                await asyncio.sleep(self.batch_delay)

        except ClassificationCancelled:
            self._checkpoint(results, total, cancelled=True)
            if on_batch_complete is not None:
                on_batch_complete(dict(results))
            self._transition(ClassificationState.CANCELLED)
            logger.warning(f"Classification cancelled at {len(results):,}/{total:,} artists; progress saved")
            raise
        except Exception:
            self._transition(ClassificationState.FAILED)
            raise

        progress.finish()
        self.checkpoints.clear()
        self._transition(ClassificationState.COMPLETED)

        summary.add("classified", len(results) - summary.as_dict()["resumed"])
        summary.add("total_results", len(results))
        summary.log()
        return results
