"""
File import pipeline.

    size guard -> read + detect + parse (per file) -> sort -> genre cleanup
    -> timestamp validation -> merge with stored history -> dataset checks
    -> cache enrichment -> persist

A file that fails to read or parse is skipped and reported; the import only
fails as a whole when the size cap is exceeded, every file failed, nothing
was parsed, or the merged dataset does not pass validation.
"""
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from .diagnostics import DiagnosticLog
from .errors import (
    DataValidationError,
    FileSizeLimitError,
    HistoryImportError,
    NoListensError,
)
from .genre.taxonomy import clean_genre_data
from .genre_cache import GenreCache
from .enrichment import enrich_listens_with_genres
from .logging_utils import RunSummary, format_count, stage_timer
from .merge import MergeEngine, validate_listening_data
from .models import DateRange, ListeningEvent, MergeInfo
from .parsers import parse, read_payload
from .parsers.reader import DEFAULT_CHUNK_SIZE
from .parsers.spotify import DEFAULT_MIN_MS_PLAYED
from .timestamps import validate_and_clean_timestamps, validate_dataset

logger = logging.getLogger(__name__)

DEFAULT_MAX_BYTES = 250 * 1024 * 1024

ImportProgress = Callable[[int, str], None]


@dataclass
class ImportResult:
    success: bool
    count: int = 0
    listens: List[ListeningEvent] = field(default_factory=list)
    merge_info: Optional[MergeInfo] = None
    genre_report: Optional[Dict[str, Any]] = None
    timestamp_stats: Optional[Dict[str, int]] = None
    date_range: Optional[DateRange] = None
    error: Optional[str] = None
    details: Any = None
    file_errors: List[Dict[str, str]] = field(default_factory=list)


class HistoryImporter:
    """Imports export files into the history store"""

    def __init__(
        self,
        engine: MergeEngine,
        cache: GenreCache,
        diagnostics: Optional[DiagnosticLog] = None,
        max_bytes: int = DEFAULT_MAX_BYTES,
        min_ms_played: int = DEFAULT_MIN_MS_PLAYED,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        min_valid_percentage: float = 90.0,
        min_year_span: float = 0.08,
    ):
        self.engine = engine
        self.cache = cache
        self.diagnostics = diagnostics or DiagnosticLog()
        self.max_bytes = max_bytes
        self.min_ms_played = min_ms_played
        self.chunk_size = chunk_size
        self.min_valid_percentage = min_valid_percentage
        self.min_year_span = min_year_span

    def _check_size(self, paths: Sequence[str]) -> None:
        total = sum(os.path.getsize(p) for p in paths if os.path.exists(p))
        if total > self.max_bytes:
            raise FileSizeLimitError(
                f"Total file size ({total / 1024 / 1024:.1f} MB) exceeds the "
                f"{self.max_bytes / 1024 / 1024:.0f} MB limit"
            )

    def _parse_files(
        self,
        paths: Sequence[str],
        on_progress: Optional[ImportProgress],
    ) -> Dict[str, Any]:
        events: List[ListeningEvent] = []
        file_errors: List[Dict[str, str]] = []

        for index, path in enumerate(paths):
            name = os.path.basename(path)
            _report(on_progress, int(index / max(len(paths), 1) * 50), f"Parsing {name}")
            try:
                payload = read_payload(path, self.chunk_size)
                result = parse(payload.data, name, index, self.min_ms_played)
            except (HistoryImportError, OSError, UnicodeDecodeError) as e:
                logger.error(f"Failed to parse {name}: {e}")
                self.diagnostics.record(e, context='file parsing', file=name)
                file_errors.append({'file': name, 'error': str(e)})
                continue

            logger.info(f"{name}: {format_count(result.count, 'listen')} ({result.format})")
            events.extend(result.events)

        return {'events': events, 'file_errors': file_errors}

    def import_files(
        self,
        paths: Sequence[str],
        on_progress: Optional[ImportProgress] = None,
    ) -> ImportResult:
        """
        Import one or more export files

        Args:
            paths: JSON / JSONL export files
            on_progress: Called with (percentage, status message)

        Returns:
            ImportResult; success=False carries `error` and `details`
        """
        paths = list(paths)
        file_errors: List[Dict[str, str]] = []
        try:
            self._check_size(paths)

            with stage_timer("Parse files", logger):
                parsed = self._parse_files(paths, on_progress)
            file_errors = parsed['file_errors']
            events = parsed['events']

            if paths and len(file_errors) == len(paths):
                return self._failure(
                    "All files failed to parse",
                    details=[f"{e['file']}: {e['error']}" for e in file_errors],
                    file_errors=file_errors,
                )
            if not events:
                raise NoListensError("No listens found in the uploaded files")

            events.sort(key=lambda e: e.timestamp)

            _report(on_progress, 55, "Cleaning genre data")
            events, genre_report = clean_genre_data(events)

            _report(on_progress, 65, "Validating timestamps")
            timestamp_result = validate_and_clean_timestamps(events)

            _report(on_progress, 75, "Merging with existing data")
            merged = self.engine.merge(timestamp_result.listens)

            sanity = validate_listening_data(merged.data)
            if not sanity['is_valid']:
                raise DataValidationError(sanity['error'])

            dataset = validate_dataset(merged.data, self.min_valid_percentage, self.min_year_span)
            if not dataset.is_valid:
                raise DataValidationError(dataset.error, dataset.details, dataset.debug_info)

            _report(on_progress, 85, "Applying cached genres")
            final_events = enrich_listens_with_genres(merged.data, self.cache)

            _report(on_progress, 95, "Saving")
            self.engine.persist(final_events)

        except DataValidationError as e:
            self.diagnostics.record(e, context='dataset validation', **e.debug_info)
            return self._failure(e.message, details=e.details, file_errors=file_errors)
        except HistoryImportError as e:
            self.diagnostics.record(e, context='import')
            return self._failure(str(e), file_errors=file_errors)

        _report(on_progress, 100, "Complete")
        result = ImportResult(
            success=True,
            count=len(final_events),
            listens=final_events,
            merge_info=merged.merge_info,
            genre_report=genre_report.to_dict(),
            timestamp_stats=timestamp_result.stats,
            date_range=DateRange.of(final_events),
            file_errors=file_errors,
        )

        summary = RunSummary("Import Summary", logger)
        summary.add("files", len(paths))
        summary.add("failed_files", len(file_errors))
        summary.add("new_listens", merged.merge_info.new)
        summary.add("duplicates", merged.merge_info.duplicates)
        summary.add("total_listens", result.count)
        summary.log()
        return result

    def _failure(self, error: str, details: Any = None, file_errors=None) -> ImportResult:
        logger.error(f"Import failed: {error}")
        return ImportResult(success=False, error=error, details=details, file_errors=file_errors or [])


def _report(on_progress: Optional[ImportProgress], percentage: int, status: str) -> None:
    if on_progress is not None:
        on_progress(percentage, status)
