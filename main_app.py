# -*- coding: utf-8 -*-
"""
soundtrail - Main Application
Imports listening-history exports, classifies artist genres and reports how
your listening evolved over time
"""
import argparse
import asyncio
import json
import logging
import os
import signal
import sys
from typing import Dict, List, Optional

from soundtrail.aggregation import (
    TimePeriod,
    calculate_genre_diversity,
    group_listens_by_time_period,
    suggest_optimal_period,
)
from soundtrail.classifier import CancellationToken, GenreClassifier
from soundtrail.config_loader import Config
from soundtrail.diagnostics import DiagnosticLog, attach_to_root
from soundtrail.enrichment import listens_needing_genres, update_listens_with_genre_map
from soundtrail.errors import ClassificationCancelled, SoundtrailError
from soundtrail.gateway import GatewayPolicy, detect_gateway_artists, generate_milestones
from soundtrail.genre_cache import GenreCache
from soundtrail.importer import HistoryImporter
from soundtrail.logging_utils import add_logging_args, configure_logging, resolve_log_level
from soundtrail.merge import MergeEngine
from soundtrail.models import ListeningEvent, ProgressEvent
from soundtrail.orchestrator import BatchClassifier, CheckpointStore
from soundtrail.providers import LastFMProvider, ListenBrainzProvider, MusicBrainzProvider
from soundtrail.storage import HistoryStore, export_backup, import_backup
from soundtrail.timestamps import clean_stored_timestamps, format_timestamp

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = "config.yaml"


class SoundtrailApp:
    """Main application orchestrator"""

    def __init__(self, config_path: Optional[str] = None, log_level: Optional[str] = None,
                 log_file: Optional[str] = None):
        self.config = Config(config_path)

        configure_logging(
            level=log_level or self.config.log_level,
            log_file=log_file or self.config.log_file,
        )
        self.diagnostics = DiagnosticLog(self.config.diagnostic_capacity)
        self._diagnostic_handler = attach_to_root(self.diagnostics)

        db_path = self.config.database_path
        if os.path.dirname(db_path):
            os.makedirs(os.path.dirname(db_path), exist_ok=True)
        self.store = HistoryStore(db_path)
        self.cache = GenreCache(self.store, self.config.cache_expiry_days)

        self.musicbrainz = MusicBrainzProvider.from_config(self.config.provider('musicbrainz'))
        self.lastfm = LastFMProvider.from_config(
            self.config.provider('lastfm'),
            api_key=self.config.lastfm_api_key,
        )
        self.listenbrainz = ListenBrainzProvider.from_config(self.config.provider('listenbrainz'))

        self.classifier = GenreClassifier(
            self.cache,
            resolver=self.musicbrainz,
            tag_providers=[self.lastfm, self.listenbrainz, self.musicbrainz],
        )
        self.checkpoints = CheckpointStore(self.store)
        self.engine = MergeEngine(self.store)
        self.importer = HistoryImporter(
            self.engine,
            self.cache,
            diagnostics=self.diagnostics,
            max_bytes=self.config.max_import_bytes,
            min_ms_played=self.config.min_ms_played,
            chunk_size=self.config.jsonl_chunk_size,
            min_valid_percentage=self.config.min_valid_percentage,
            min_year_span=self.config.min_year_span,
        )
        self.gateway_policy = GatewayPolicy.from_config(self.config.config['gateway'])
        logger.debug(f"soundtrail initialized (database: {db_path})")

    def close(self) -> None:
        for provider in (self.musicbrainz, self.lastfm, self.listenbrainz):
            provider.close()
        if self._diagnostic_handler is not None:
            logging.getLogger().removeHandler(self._diagnostic_handler)
        self.store.close()

    def load_listens(self) -> List[ListeningEvent]:
        return self.engine.load_existing()

    def genre_map(self) -> Dict[str, List[str]]:
        return {
            entry.artist: list(entry.genres)
            for entry in self.cache.all_entries(include_expired=True)
        }

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def import_files(self, paths: List[str]) -> int:
        result = self.importer.import_files(
            paths,
            on_progress=lambda pct, status: logger.info(f"[{pct:3d}%] {status}"),
        )
        if not result.success:
            print(f"\nImport failed: {result.error}")
            if result.details:
                details = result.details if isinstance(result.details, list) else [result.details]
                for line in details:
                    print(f"  {line}")
            return 1

        info = result.merge_info
        print("\n" + "=" * 60)
        print("IMPORT COMPLETE")
        print("=" * 60)
        print(f"  Listens stored:   {result.count:,}")
        print(f"  New in this run:  {info.new:,} ({info.duplicates:,} duplicates, {info.duplicate_rate}%)")
        if result.date_range:
            print(f"  Date range:       {format_timestamp(result.date_range.earliest)[:10]}"
                  f" to {format_timestamp(result.date_range.latest)[:10]}")
        for failure in result.file_errors:
            print(f"  Skipped {failure['file']}: {failure['error']}")
        pending = listens_needing_genres(result.listens)
        if pending['artists']:
            print(f"\n  {pending['artists']:,} artists need genres. Run: main_app.py classify")
        print("=" * 60 + "\n")
        return 0

    async def _classify(self, artists: List[str], resume, concurrency: int) -> Dict[str, List[str]]:
        token = CancellationToken()
        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, token.cancel)
        except (NotImplementedError, RuntimeError):
            # Windows event loops have no signal handler support
            pass

        runner = BatchClassifier(
            self.classifier,
            self.checkpoints,
            concurrency=concurrency,
            batch_delay=self.config.batch_delay_seconds,
        )

        def on_progress(event: ProgressEvent) -> None:
            if event.current is not None:
                logger.info(f"[{event.current}/{event.total}] {event.artist}: {', '.join(event.genres or [])}")

        try:
            return await runner.run(artists, on_progress=on_progress, token=token, resume=resume)
        finally:
            try:
                loop.remove_signal_handler(signal.SIGINT)
            except (NotImplementedError, RuntimeError):
                pass

    def classify(self, resume: bool = False, concurrency: Optional[int] = None) -> int:
        checkpoint = self.checkpoints.resumable() if resume else None
        if resume and checkpoint is None:
            print("No interrupted classification run to resume; starting fresh.")

        pending = listens_needing_genres(self.load_listens())
        artists = list(checkpoint.results) if checkpoint else []
        known = set(artists)
        artists.extend(a for a in pending['artist_list'] if a not in known)
        if not artists:
            print("Every artist already has genres.")
            return 0

        print(f"Classifying {len(artists):,} artists (Ctrl-C to stop; progress is saved)")
        try:
            results = asyncio.run(self._classify(
                artists, checkpoint, concurrency or self.config.classification_concurrency
            ))
        except ClassificationCancelled:
            saved = self.checkpoints.load()
            partial = saved.results if saved else {}
            update_listens_with_genre_map(self.store, partial)
            print(f"\nCancelled after {len(partial):,}/{len(artists):,} artists. "
                  f"Resume with: main_app.py classify --resume")
            return 130

        update = update_listens_with_genre_map(self.store, results)
        print(f"\nClassified {len(results):,} artists; updated {update['updated']:,} listens.")
        return 0

    def _period(self, name: Optional[str], count: int) -> TimePeriod:
        return TimePeriod(name) if name else suggest_optimal_period(count)

    def timeline(self, period: Optional[str] = None) -> int:
        events = self.load_listens()
        if not events:
            print("No listens stored. Import a file first.")
            return 1

        chosen = self._period(period, len(events))
        groups = group_listens_by_time_period(events, chosen, self.genre_map())
        print(f"\n{len(events):,} listens in {len(groups)} {chosen.value} periods\n")
        for group in groups:
            top = ", ".join(f"{s.genre} {s.percentage:.0f}%" for s in group.genres[:3])
            diversity = calculate_genre_diversity(group.genres)
            print(f"  {group.period_label:<24} {len(group.listens):>6,}  diversity {diversity:.2f}  {top}")
        return 0

    def gateways(self, period: Optional[str] = None) -> int:
        events = self.load_listens()
        if not events:
            print("No listens stored. Import a file first.")
            return 1

        chosen = self._period(period, len(events))
        genre_map = self.genre_map()
        groups = group_listens_by_time_period(events, chosen, genre_map)
        found = detect_gateway_artists(groups, genre_map, events, self.gateway_policy)
        if not found:
            print("No gateway artists detected.")
            return 0

        print(f"\nGateway artists ({chosen.value} periods):\n")
        for gateway in found:
            print(f"  {gateway.artist:<30} {gateway.trigger_genre:<20} "
                  f"{gateway.before_share:5.1f}% -> {gateway.after_share:5.1f}%  "
                  f"(+{gateway.growth:.1f}, {gateway.period_label})")
        print("\nMilestones:")
        for milestone in generate_milestones(found):
            print(f"  {milestone['date']}  {milestone['title']} - {milestone['description']}")
        return 0

    def export(self, path: str) -> int:
        document = export_backup(self.store)
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(document, f, indent=2, ensure_ascii=False)
        print(f"Backup written to {path} ({document['metadata']['totalListens']:,} listens)")
        return 0

    def restore(self, path: str) -> int:
        with open(path, 'r', encoding='utf-8') as f:
            document = json.load(f)
        counts = import_backup(self.store, document)
        print(f"Restored: {', '.join(f'{k}={v:,}' for k, v in counts.items())}")
        return 0

    def cache_stats(self) -> int:
        stats = self.cache.stats()
        health = self.cache.validate()
        print(f"\nGenre cache: {stats['total']:,} artists")
        for source, count in sorted(stats['by_source'].items(), key=lambda item: -item[1]):
            print(f"  {source:<20} {count:,}")
        print(f"  valid {health['valid']:,} / expired {health['expired']:,} / invalid {health['invalid']:,}")
        return 0

    def clear_cache(self) -> int:
        removed = self.cache.clear()
        print(f"Removed {removed:,} cached artists")
        return 0

    def clean_timestamps(self) -> int:
        report = clean_stored_timestamps(self.store)
        print(f"Repaired {report['cleaned']:,}, removed {report['removed']:,}, "
              f"{report['remaining']:,} listens remain")
        return 0

    def dump_diagnostics(self, output: Optional[str] = None) -> int:
        payload = self.diagnostics.export_json()
        if output:
            with open(output, 'w', encoding='utf-8') as f:
                f.write(payload)
            print(f"Diagnostics written to {output} ({len(self.diagnostics)} entries)")
        else:
            print(payload)
        return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Import listening history, classify genres and trace how your taste evolved"
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help=f"Path to YAML config (default: {DEFAULT_CONFIG} if present)"
    )
    add_logging_args(parser)

    periods = [p.value for p in TimePeriod]
    commands = parser.add_subparsers(dest="command", required=True)

    import_cmd = commands.add_parser("import", help="Import ListenBrainz, Spotify or Last.fm export files")
    import_cmd.add_argument("files", nargs="+", help="JSON or JSONL export files")

    classify_cmd = commands.add_parser("classify", help="Fetch genres for artists that have none")
    classify_cmd.add_argument("--resume", action="store_true", help="Continue an interrupted run")
    classify_cmd.add_argument("--concurrency", type=int, default=None,
                              help="Artists classified in parallel (default from config)")

    timeline_cmd = commands.add_parser("timeline", help="Genre distribution per time period")
    timeline_cmd.add_argument("--period", choices=periods, help="Bucket size (default: picked from data size)")

    gateways_cmd = commands.add_parser("gateways", help="Artists that led into a new genre")
    gateways_cmd.add_argument("--period", choices=periods, help="Bucket size (default: picked from data size)")

    export_cmd = commands.add_parser("export", help="Write a backup JSON document")
    export_cmd.add_argument("path")

    restore_cmd = commands.add_parser("restore", help="Restore from a backup JSON document")
    restore_cmd.add_argument("path")

    commands.add_parser("cache-stats", help="Genre cache statistics")
    commands.add_parser("clear-cache", help="Delete every cached artist genre")
    commands.add_parser("clean-timestamps", help="Repair or remove stored listens with bad timestamps")

    diagnostics_cmd = commands.add_parser("diagnostics", help="Print the diagnostic log as JSON")
    diagnostics_cmd.add_argument("--output", type=str, help="Write to a file instead of stdout")
    return parser


def run_command(app: SoundtrailApp, args) -> int:
    if args.command == "import":
        return app.import_files(args.files)
    if args.command == "classify":
        return app.classify(resume=args.resume, concurrency=args.concurrency)
    if args.command == "timeline":
        return app.timeline(args.period)
    if args.command == "gateways":
        return app.gateways(args.period)
    if args.command == "export":
        return app.export(args.path)
    if args.command == "restore":
        return app.restore(args.path)
    if args.command == "cache-stats":
        return app.cache_stats()
    if args.command == "clear-cache":
        return app.clear_cache()
    if args.command == "clean-timestamps":
        return app.clean_timestamps()
    if args.command == "diagnostics":
        return app.dump_diagnostics(args.output)
    raise ValueError(f"Unknown command: {args.command}")


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point"""
    args = build_parser().parse_args(argv)

    config_path = args.config
    if config_path is None and os.path.exists(DEFAULT_CONFIG):
        config_path = DEFAULT_CONFIG

    try:
        app = SoundtrailApp(
            config_path,
            log_level=resolve_log_level(args, default=None),
            log_file=args.log_file,
        )
    except (FileNotFoundError, ValueError) as e:
        print(f"\nConfiguration Error: {e}")
        print("\nPlease check your config file.\n")
        return 1

    try:
        return run_command(app, args)
    except (SoundtrailError, OSError, ValueError) as e:
        logger.error(f"{args.command} failed: {e}", exc_info=True)
        print(f"\nError: {e}\n")
        return 1
    finally:
        app.close()


if __name__ == "__main__":
    sys.exit(main())
