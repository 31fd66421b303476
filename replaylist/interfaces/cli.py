import argparse
import logging
import signal
import sys
import threading
import time
from datetime import datetime, timedelta
from typing import List, Optional

from dotenv import load_dotenv

from replaylist.application.service import SyncService, new_transfer_id
from replaylist.application.transfer import unmatched_reason
from replaylist.crosscutting.config import MAX_WORKERS_CAP, ConfigError, Settings, setup_config
from replaylist.crosscutting.logging import setup_logging
from replaylist.crosscutting.metrics import TransferMetrics
from replaylist.crosscutting.reporting import save_report
from replaylist.domain.entities import Credential, Provider
from replaylist.domain.errors import ReplaylistError
from replaylist.infrastructure.credentials import JsonFileCredentialStore

PROVIDER_CHOICES = [p.value for p in Provider]


class CLI:
    """Command Line Interface for replaylist."""

    def __init__(self, settings: Optional[Settings] = None):
        """Initialize CLI."""
        # .env is loaded by main() only, so tests stay deterministic
        self.settings = settings
        self.parser = self._create_parser()
        self.cancel_event = threading.Event()
        self._transfer_running = False
        self._start_time = None
        self._setup_signal_handlers()

    def _create_parser(self) -> argparse.ArgumentParser:
        """Create argument parser."""
        common = argparse.ArgumentParser(add_help=False)
        common.add_argument(
            '--log-level',
            choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
            default=None,
            help='Set logging level (default: REPLAYLIST_LOG_LEVEL or INFO)'
        )
        common.add_argument(
            '--plain-logs',
            action='store_true',
            help='Human-readable log lines instead of JSON'
        )

        parser = argparse.ArgumentParser(
            prog='replaylist',
            description='Copy playlists between Apple Music, Spotify and YouTube Music'
        )
        subparsers = parser.add_subparsers(dest='command', help='Available commands')

        # List playlists command
        list_parser = subparsers.add_parser('list', parents=[common], help='List playlists of a library')
        list_parser.add_argument(
            '--provider',
            choices=PROVIDER_CHOICES,
            required=True,
            help='Provider to list playlists from'
        )
        list_parser.add_argument(
            '--tracks',
            action='store_true',
            help='Also print every track'
        )

        # Transfer command
        transfer_parser = subparsers.add_parser('transfer', parents=[common], help='Copy one playlist')
        transfer_parser.add_argument(
            '--source',
            choices=PROVIDER_CHOICES,
            required=True,
            help='Source provider'
        )
        transfer_parser.add_argument(
            '--target',
            choices=PROVIDER_CHOICES,
            required=True,
            help='Destination provider'
        )
        transfer_parser.add_argument(
            '--playlist',
            required=True,
            help='Source playlist ID or exact name'
        )
        transfer_parser.add_argument(
            '--name',
            default=None,
            help='Name of the new playlist (default: source playlist name)'
        )
        transfer_parser.add_argument(
            '--report-path',
            default='reports/',
            help='Path to save reports (default: reports/)'
        )
        transfer_parser.add_argument(
            '--workers',
            type=int,
            default=None,
            help=f'Concurrent track lookups, 1..{MAX_WORKERS_CAP} (default: REPLAYLIST_MAX_WORKERS or 5)'
        )

        # Status command
        subparsers.add_parser('status', parents=[common], help='Show configuration and stored logins')

        # Login command
        login_parser = subparsers.add_parser('login', parents=[common], help='Store tokens for a provider')
        login_parser.add_argument(
            '--provider',
            choices=PROVIDER_CHOICES,
            required=True,
            help='Provider the tokens belong to'
        )
        login_parser.add_argument('--access-token', help='OAuth access token (Spotify, YouTube)')
        login_parser.add_argument('--refresh-token', help='OAuth refresh token (Spotify, YouTube)')
        login_parser.add_argument('--expires-in', type=int, help='Access token lifetime in seconds')
        login_parser.add_argument('--user-token', help='Music-User-Token (Apple Music)')

        return parser

    def _setup_signal_handlers(self) -> None:
        """First SIGINT/SIGTERM cancels a running transfer, a second one exits."""
        def signal_handler(signum, frame):
            logger = logging.getLogger(__name__)
            if self._transfer_running and not self.cancel_event.is_set():
                logger.warning(f"Received signal {signum}, cancelling transfer after in-flight tracks...")
                self.cancel_event.set()
                return
            logger.warning(f"Received signal {signum}, shutting down")
            self._cleanup_resources()
            sys.exit(130)  # Standard exit code for signal termination

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

    def _cleanup_resources(self) -> None:
        """Log execution time on exit."""
        logger = logging.getLogger(__name__)
        if self._start_time:
            duration = time.time() - self._start_time
            logger.info(f"CLI execution time: {duration:.2f}s")
            self._start_time = None

    def _validate_arguments(self, args: argparse.Namespace) -> None:
        """Validate CLI arguments."""
        if args.command == 'transfer':
            if args.source == args.target:
                raise ValueError("Source and target providers must be different")
            if args.workers is not None and not 1 <= args.workers <= MAX_WORKERS_CAP:
                raise ValueError(f"--workers must be between 1 and {MAX_WORKERS_CAP}")
        if args.command == 'login':
            if args.provider == Provider.APPLE.value and not args.user_token:
                raise ValueError("--user-token is required for apple")
            if args.provider != Provider.APPLE.value and not args.access_token:
                raise ValueError(f"--access-token is required for {args.provider}")

    def _get_settings(self) -> Settings:
        if self.settings is None:
            self.settings = setup_config()
        return self.settings

    def _store(self) -> JsonFileCredentialStore:
        return JsonFileCredentialStore(self._get_settings().tokens_file)

    def _build_service(self) -> SyncService:
        return SyncService.from_settings(self._store(), self._get_settings())

    def _list_playlists(self, args: argparse.Namespace) -> None:
        """List playlists of one provider."""
        provider = Provider.parse(args.provider)
        playlists = self._build_service().list_playlists(provider)

        print(f"Playlists from {provider.value}:")
        print("-" * 50)

        for playlist in playlists:
            status = "" if playlist.tracks_complete else f" [tracks unavailable: {playlist.tracks_error}]"
            print(f"{playlist.id}: {playlist.name} (tracks: {playlist.track_count}){status}")
            if args.tracks:
                for track in playlist.tracks:
                    isrc = f" [{track.isrc}]" if track.isrc else ""
                    print(f"    {track.title} - {track.artist}{isrc}")

    def _transfer_playlist(self, args: argparse.Namespace) -> None:
        """Copy one playlist from source to target."""
        logger = logging.getLogger(__name__)

        source = Provider.parse(args.source)
        target = Provider.parse(args.target)

        service = self._build_service()
        if args.workers is not None:
            service.max_workers = args.workers

        playlist = service.find_playlist(source, args.playlist)
        transfer_id = new_transfer_id()
        metrics = TransferMetrics()

        logger.info(f"Transferring '{playlist.name}' ({len(playlist.tracks)} tracks) "
                    f"from {source.value} to {target.value} (transfer: {transfer_id})")

        self._transfer_running = True
        try:
            report = service.transfer_playlist(
                source, target, playlist,
                name=args.name,
                cancel_event=self.cancel_event,
                metrics=metrics,
                transfer_id=transfer_id,
            )
        finally:
            self._transfer_running = False

        print(f"Created {target.value} playlist {report.destination_playlist_id}")
        print(f"Copied {len(report.matched)}/{report.total_tracks} tracks, "
              f"{report.unmatched_count} not copied")
        for result in report.unmatched:
            track = result.source_track
            print(f"  - {track.title} - {track.artist}: {unmatched_reason(result)}")

        report_file = save_report(report, args.report_path, transfer_id, metrics=metrics)
        logger.info(f"Report saved to: {report_file}")

        if self.cancel_event.is_set():
            logger.warning("Transfer was cancelled; remaining tracks are listed as cancelled")
            sys.exit(130)

    def _show_status(self, args: argparse.Namespace) -> None:
        """Print configuration summary and stored logins."""
        settings = self._get_settings()
        summary = settings.summary()
        logged_in = {p.value for p in self._store().providers()}

        print("Configuration:")
        for key in ('config_dir', 'tokens_file', 'max_workers', 'http_timeout', 'apple_storefront'):
            print(f"  {key}: {summary[key]}")
        for key, present in summary['validation'].items():
            print(f"  {key}: {'yes' if present else 'no'}")

        print("Logins:")
        for provider in Provider:
            print(f"  {provider.value}: {'logged in' if provider.value in logged_in else 'not logged in'}")

    def _login(self, args: argparse.Namespace) -> None:
        """Save tokens for a provider into the token file."""
        logger = logging.getLogger(__name__)
        provider = Provider.parse(args.provider)
        expires_at = datetime.now() + timedelta(seconds=args.expires_in) if args.expires_in else None

        self._store().put(Credential(
            provider=provider,
            access_token=args.access_token or '',
            refresh_token=args.refresh_token,
            expires_at=expires_at,
            user_token=args.user_token,
        ))
        logger.info(f"Stored {provider.value} credentials in {self._get_settings().tokens_file}")
        print(f"Logged in to {provider.value}")

    def run(self, argv: Optional[List[str]] = None) -> None:
        """Run the CLI."""
        self._start_time = time.time()
        logger = logging.getLogger(__name__)

        args = self.parser.parse_args(argv)
        if not args.command:
            self.parser.print_help()
            sys.exit(1)

        try:
            settings = self._get_settings()
            setup_logging(args.log_level or settings.log_level, structured=not args.plain_logs)
            self._validate_arguments(args)

            if args.command == 'list':
                self._list_playlists(args)
            elif args.command == 'transfer':
                self._transfer_playlist(args)
            elif args.command == 'status':
                self._show_status(args)
            elif args.command == 'login':
                self._login(args)
            else:
                self.parser.print_help()
                sys.exit(1)

        except KeyboardInterrupt:
            logger.warning("Operation cancelled by user")
            sys.exit(130)
        except (ReplaylistError, ConfigError, ValueError) as e:
            logger.error(f"{args.command} failed: {e}")
            sys.exit(1)
        finally:
            self._cleanup_resources()


def main():
    """Main entry point."""
    load_dotenv()
    cli = CLI()
    cli.run()


if __name__ == '__main__':
    main()
