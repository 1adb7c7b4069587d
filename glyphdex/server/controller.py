"""Builds the importer's services once and runs them."""

import asyncio
import logging
from typing import Optional

from glyphdex.lib import util
from glyphdex.server.daemon import Daemon
from glyphdex.server.data_processor import DataProcessor
from glyphdex.server.db import DB
from glyphdex.server.import_log import ImportLogStore, install_log_handler
from glyphdex.server.import_state import ImportStateStore
from glyphdex.server.importer import BlockImporter, ImportAlreadyRunning, ImportResult
from glyphdex.server.scheduler import ImportScheduler
from glyphdex.server.stats import StatsIndex


class Controller:
    """Owns the DB handle and the daemon and wires every service to them."""

    def __init__(self, env, db: Optional[DB] = None, daemon: Optional[Daemon] = None):
        self.logger = util.class_logger(__name__, self.__class__.__name__)
        self.env = env
        self.db = db or DB(env)
        self.daemon = daemon or Daemon.from_env(env)
        self.state = ImportStateStore(self.db, env)
        self.stats = StatsIndex(self.db, env)
        self.logs = ImportLogStore(self.db)
        self.processor = DataProcessor(self.db, self.daemon, env, self.stats)
        self.glyphs = self.processor.glyphs
        self.importer = BlockImporter(self.processor, self.state, env)
        self.scheduler = ImportScheduler(self.importer, env)
        self.log_handler: Optional[logging.Handler] = None

    def install_log_handler(self):
        if getattr(self.env, 'log_to_db', False) and self.log_handler is None:
            self.log_handler = install_log_handler(self.logs)

    async def import_once(self, reset_to_block: Optional[int] = None) -> ImportResult:
        return await self.importer.import_batch(reset_to_block)

    async def run_import(self, reset_to_block: Optional[int] = None) -> Optional[ImportResult]:
        """Run one batch in the background, logging instead of raising."""
        try:
            return await self.import_once(reset_to_block)
        except ImportAlreadyRunning:
            self.logger.warning('import request rejected: already running')
        except Exception as e:
            self.logger.error(f'import failed: {e!r}')
        return None

    async def serve_admin(self):
        import uvicorn

        from glyphdex.server.rest_api import create_app

        config = uvicorn.Config(create_app(self), host=self.env.admin_host,
                                port=self.env.admin_port, log_level='warning')
        self.logger.info(f'admin API listening on '
                         f'{self.env.admin_host}:{self.env.admin_port}')
        await uvicorn.Server(config).serve()

    async def run(self):
        """Run the scheduler, and the admin API if a port is configured."""
        self.logger.info(f'node {getattr(self.env, "redacted_daemon_url", "")}')
        tasks = [asyncio.ensure_future(self.scheduler.run_forever())]
        if getattr(self.env, 'admin_port', None):
            tasks.append(asyncio.ensure_future(self.serve_admin()))
        try:
            done, _pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                task.result()
        finally:
            self.scheduler.stop()
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

    async def close(self):
        if self.log_handler is not None:
            logging.getLogger('glyphdex').removeHandler(self.log_handler)
            self.log_handler = None
        await self.daemon.close()
        self.db.close()
