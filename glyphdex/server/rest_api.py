"""
FastAPI admin API for glyphdex

Exposes the import state, import control, the durable import log, the
statistics roll-up and read-only glyph queries.  Every route requires the
``X-API-Key`` header when ``ADMIN_API_KEY`` is configured.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from aiorpcx import run_in_thread
from fastapi import BackgroundTasks, Depends, FastAPI, Header, HTTPException, Path, Query
from pydantic import BaseModel, Field

from glyphdex import version_short
from glyphdex.lib.glyph import GlyphType
from glyphdex.server.models import LogLevel


# =============================================================================
# REQUEST / RESPONSE MODELS
# =============================================================================

class ImportRequest(BaseModel):
    reset_to_block: Optional[int] = Field(default=None, alias='resetToBlock', ge=0)
    reset_import_flag: Optional[bool] = Field(default=None, alias='resetImportFlag')


class ImportResponse(BaseModel):
    message: str
    lastBlockHeight: int


class DeleteLogsRequest(BaseModel):
    older_than: datetime = Field(alias='olderThan')


class Pagination(BaseModel):
    total: int
    limit: int
    skip: int
    hasMore: bool


class LogsResponse(BaseModel):
    logs: List[Dict[str, Any]]
    pagination: Pagination


class GlyphsResponse(BaseModel):
    glyphs: List[Dict[str, Any]]
    limit: int
    skip: int


def create_app(controller) -> FastAPI:
    """Build the admin app around a running Controller."""
    app = FastAPI(
        title='glyphdex admin API',
        description='Import control and monitoring for the Glyph indexer',
        version=version_short,
    )

    def _require_api_key(x_api_key: Optional[str] = Header(default=None, alias='X-API-Key')):
        required_key = getattr(controller.env, 'admin_api_key', '')
        if not required_key:
            return
        if not x_api_key or x_api_key != required_key:
            raise HTTPException(status_code=401, detail='Unauthorized')

    auth = [Depends(_require_api_key)]

    # =========================================================================
    # IMPORT CONTROL
    # =========================================================================

    @app.get('/admin/import', dependencies=auth, tags=['Admin'])
    async def get_import_state():
        state = controller.state.get().to_api()
        state['mode'] = controller.scheduler.mode
        return state

    @app.post('/admin/import', response_model=ImportResponse, dependencies=auth,
              tags=['Admin'])
    async def start_import(background_tasks: BackgroundTasks,
                           request: Optional[ImportRequest] = None):
        request = request or ImportRequest()
        state = controller.state.get()

        if request.reset_import_flag:
            controller.importer.reset(reset_flag=True)
            return ImportResponse(message='Import flag reset to false',
                                  lastBlockHeight=state.last_block_height)

        if state.is_importing:
            raise HTTPException(status_code=409, detail='Import is already running')

        background_tasks.add_task(controller.run_import, request.reset_to_block)
        height = (request.reset_to_block if request.reset_to_block is not None
                  else state.last_block_height)
        return ImportResponse(message='Import started', lastBlockHeight=height)

    # =========================================================================
    # IMPORT LOGS
    # =========================================================================

    @app.get('/admin/logs', response_model=LogsResponse, dependencies=auth,
             tags=['Admin'])
    async def get_logs(
        level: Optional[LogLevel] = None,
        start_date: Optional[datetime] = Query(default=None, alias='startDate'),
        end_date: Optional[datetime] = Query(default=None, alias='endDate'),
        block_height: Optional[int] = Query(default=None, alias='blockHeight'),
        limit: int = Query(default=100, ge=1, le=1000),
        skip: int = Query(default=0, ge=0),
    ):
        logs = controller.logs.find_all(limit, skip, level, start_date, end_date,
                                        block_height)
        total = controller.logs.count(level, start_date, end_date, block_height)
        return LogsResponse(
            logs=[entry.to_api() for entry in logs],
            pagination=Pagination(total=total, limit=limit, skip=skip,
                                  hasMore=skip + len(logs) < total),
        )

    @app.delete('/admin/logs', dependencies=auth, tags=['Admin'])
    async def delete_logs(request: DeleteLogsRequest):
        deleted = controller.logs.delete_older_than(request.older_than)
        return {
            'message': f'Successfully deleted {deleted} logs older than '
                       f'{request.older_than.isoformat()}',
            'deletedCount': deleted,
        }

    # =========================================================================
    # STATS
    # =========================================================================

    @app.get('/stats', dependencies=auth, tags=['Stats'])
    async def get_stats():
        stats = await run_in_thread(controller.stats.get)
        return stats.to_api()

    # =========================================================================
    # GLYPHS
    # =========================================================================

    @app.get('/glyphs', response_model=GlyphsResponse, dependencies=auth,
             tags=['Glyphs'])
    async def get_glyphs(
        q: Optional[str] = Query(default=None, min_length=1),
        token_type: Optional[GlyphType] = Query(default=None, alias='type'),
        author: Optional[str] = None,
        container: Optional[str] = None,
        limit: int = Query(default=100, ge=1, le=500),
        skip: int = Query(default=0, ge=0),
    ):
        """List glyphs newest first.

        ``q`` runs a ranked text search and takes precedence over ``author``,
        which takes precedence over ``container``.  ``type`` narrows any of
        them.
        """
        glyphs = controller.glyphs
        query = {'token_type': token_type} if token_type else None
        if q is not None:
            found = await run_in_thread(glyphs.search, q, limit, skip, query)
        elif author:
            found = await run_in_thread(glyphs.find_by_author, author.lower(),
                                        limit, skip, query)
        elif container:
            found = await run_in_thread(glyphs.find_by_container, container.lower(),
                                        limit, skip, query)
        else:
            found = await run_in_thread(glyphs.find_all, limit, skip, query)
        return GlyphsResponse(glyphs=[glyph.to_api() for glyph in found],
                              limit=limit, skip=skip)

    @app.get('/glyphs/users', response_model=GlyphsResponse, dependencies=auth,
             tags=['Glyphs'])
    async def get_users(limit: int = Query(default=100, ge=1, le=500),
                        skip: int = Query(default=0, ge=0)):
        found = await run_in_thread(controller.glyphs.find_users, limit, skip)
        return GlyphsResponse(glyphs=[glyph.to_api() for glyph in found],
                              limit=limit, skip=skip)

    @app.get('/glyphs/{ref}', dependencies=auth, tags=['Glyphs'])
    async def get_glyph(ref: str = Path(..., min_length=72, max_length=72)):
        """Glyph by big-endian reference (72 hex chars = 36 bytes)."""
        glyph = controller.glyphs.find_by_ref(ref.lower())
        if glyph is None:
            raise HTTPException(status_code=404, detail='Glyph not found')
        return glyph.to_api()

    return app
