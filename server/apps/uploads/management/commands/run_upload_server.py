"""Django management command to run the upload server."""

import logging
import os
import sys
from typing import Any, Final, final, override

from cheroot.wsgi import Server as WSGIServer
from django.conf import settings
from django.core.management.base import BaseCommand

from server.apps.uploads.runtime import (
    PipelineRunner,
    get_runner,
    shutdown_runner,
)

logger = logging.getLogger(__name__)

# Set in the server subprocess started by the reloader
_RELOAD_ENV_VAR: Final = 'UPLOAD_SERVER_RELOAD_SUBPROCESS'
_SHUTDOWN_TIMEOUT: Final = 30.0


@final
class Command(BaseCommand):
    """Serve the hook and volume API with cheroot next to the pipeline."""

    help = 'Run the upload hook server and the reconciliation pipeline'

    @override
    def add_arguments(self, parser: Any) -> None:
        """Add command arguments.

        Args:
            parser: Argument parser.
        """
        parser.add_argument(
            '--host',
            type=str,
            default=None,
            help='Host to bind to (default: from settings)',
        )
        parser.add_argument(
            '--port',
            type=int,
            default=None,
            help='Port to bind to (default: from settings)',
        )
        parser.add_argument(
            '--threads',
            type=int,
            default=10,
            help='Number of WSGI worker threads (default: 10)',
        )
        parser.add_argument(
            '--reload',
            action='store_true',
            default=False,
            help='Enable auto-reload on code changes (development only)',
        )

    @override
    def handle(self, *args: Any, **options: Any) -> None:
        """Execute the command.

        Args:
            args: Positional arguments.
            options: Keyword arguments from command line.
        """
        use_reload = options['reload']
        is_subprocess = os.environ.get(_RELOAD_ENV_VAR) == 'true'

        if use_reload and not is_subprocess:
            self._run_with_reload(options)
        else:
            self._run_server(options)

    def _run_server(self, options: dict[str, Any]) -> None:
        """Run the WSGI server and the pipeline in this process.

        Args:
            options: Command options.
        """
        from server.wsgi import application  # noqa: PLC0415

        host = options['host'] or getattr(
            settings,
            'UPLOAD_SERVER_HOST',
            '0.0.0.0',  # noqa: S104
        )
        port = options['port'] or getattr(settings, 'UPLOAD_SERVER_PORT', 1080)

        runner = get_runner()
        self.stdout.write(
            self.style.SUCCESS(
                f'Starting upload server on {host}:{port}',
            ),
        )

        server = WSGIServer(
            bind_addr=(host, port),
            wsgi_app=application,
            numthreads=options['threads'],
        )
        server.server_name = 'CloudVolume-Uploads'

        try:
            logger.info('Upload server starting on %s:%d', host, port)
            server.start()
        except KeyboardInterrupt:
            self.stdout.write(self.style.WARNING('\nShutting down...'))
        finally:
            server.stop()
            pending = len(runner.pipeline.in_flight)
            if pending:
                self.stdout.write(
                    f'Waiting for {pending} reconciliations to finish',
                )
            shutdown_runner(_SHUTDOWN_TIMEOUT)
            self._report_incomplete_uploads(runner)
            self.stdout.write(self.style.SUCCESS('Upload server stopped'))

    def _report_incomplete_uploads(self, runner: PipelineRunner) -> None:
        """List split uploads still waiting for parts at shutdown.

        Their parts stay in staging until `cleanup_staging` removes them.

        Args:
            runner: Stopped pipeline runner.
        """
        for group in runner.pipeline.tracker.groups():
            self.stdout.write(
                self.style.WARNING(
                    f'Incomplete split upload {group.original_filename}: '
                    f'{len(group.parts)}/{group.total_parts} parts staged',
                ),
            )

    def _run_with_reload(self, options: dict[str, Any]) -> None:
        """Run server with auto-reload on file changes.

        Args:
            options: Command options.
        """
        try:
            import watchfiles  # noqa: PLC0415
        except ImportError:
            self.stderr.write(
                self.style.ERROR(
                    'watchfiles is required for --reload. '
                    'Install with: pip install -e ".[dev]"',
                ),
            )
            sys.exit(1)

        self.stdout.write(
            self.style.SUCCESS(
                'Starting upload server with auto-reload enabled...',
            ),
        )

        cmd_parts = [sys.executable, '-m', 'django', 'run_upload_server']
        if options['host']:
            cmd_parts.extend(['--host', options['host']])
        if options['port']:
            cmd_parts.extend(['--port', str(options['port'])])
        cmd_parts.extend(['--threads', str(options['threads'])])
        cmd = ' '.join(cmd_parts)

        def watch_filter(  # noqa: WPS430
            change: watchfiles.Change,
            path: str,
        ) -> bool:
            return path.endswith('.py')

        os.environ[_RELOAD_ENV_VAR] = 'true'

        watchfiles.run_process(
            str(settings.BASE_DIR / 'server'),
            target=cmd,
            target_type='command',
            watch_filter=watch_filter,
            callback=self._on_reload,
        )

    def _on_reload(self, changes: set[tuple[Any, str]]) -> None:
        for change_type, path in changes:
            self.stdout.write(
                self.style.WARNING(
                    f'Detected {change_type.name}: {path}',
                ),
            )
        self.stdout.write(
            self.style.SUCCESS('Reloading upload server...'),
        )
