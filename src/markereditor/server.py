"""HTTP API for the marker editor."""

from __future__ import annotations

import gzip
import json
import logging
from typing import Any, Dict, Tuple

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from markereditor import __version__
from markereditor.commands import CoreCommands, PurgeCommands, QueryCommands, ServerContext
from markereditor.db import RepositoryError
from markereditor.errors import QueryParameterError, ServerError
from markereditor.plex.markers import MarkerEnum
from markereditor.query_parse import QueryParser

logger = logging.getLogger(__name__)


async def _parser(request: Request) -> QueryParser:
    """Merge query string and form parameters, form values taking precedence."""
    params: Dict[str, Any] = dict(request.query_params)
    if request.method == "POST":
        form = await request.form()
        params.update({key: value for key, value in form.items() if isinstance(value, str)})
    return QueryParser(params)


def _json(result: Any, status_code: int = 200) -> JSONResponse:
    return JSONResponse(content=jsonable_encoder(result), status_code=status_code)


def _custom_markers(raw: str) -> Dict[int, Tuple[int, int]]:
    """Parse the ``markers`` form field of add_custom.

    Expected shape: ``{"<episodeId>": {"start": ms, "end": ms}, ...}``
    """
    try:
        data = json.loads(raw)
        return {
            int(episode_id): (int(bounds["start"]), int(bounds["end"]))
            for episode_id, bounds in data.items()
        }
    except (ValueError, TypeError, KeyError, AttributeError) as e:
        raise QueryParameterError(f"Invalid custom marker data: {e}") from e


def create_app(context: ServerContext) -> FastAPI:
    """Create the FastAPI application.

    Args:
        context: Open databases and settings shared by every request

    Returns:
        Configured application
    """
    app = FastAPI(title="Plex Marker Editor", version=__version__)
    core = CoreCommands(context)
    query = QueryCommands(context)
    purge = PurgeCommands(context)

    @app.exception_handler(ServerError)
    async def server_error_handler(request: Request, exc: ServerError):
        if exc.code >= 500:
            logger.error(f"{request.url.path} failed: {exc.message}")
        else:
            logger.warning(f"{request.url.path} rejected: {exc.message}")
        return JSONResponse({"Error": exc.message}, status_code=exc.code)

    @app.exception_handler(RepositoryError)
    async def repository_error_handler(request: Request, exc: RepositoryError):
        error = ServerError.from_db_error(exc)
        logger.error(f"{request.url.path} failed: {error.message}")
        return JSONResponse({"Error": error.message}, status_code=error.code)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        message = exc.detail
        if exc.status_code == 404:
            message = f"Invalid endpoint: {request.url.path}"
        return JSONResponse({"Error": message}, status_code=exc.status_code)

    # Core

    @app.post("/add")
    async def add(request: Request):
        params = await _parser(request)
        metadata_id, start, end = params.ints("metadataId", "start", "end")
        return _json(
            core.add_marker(
                metadata_id,
                start,
                end,
                params.raw("type", "intro"),
                params.b("final", False),
            )
        )

    @app.post("/edit")
    async def edit(request: Request):
        params = await _parser(request)
        marker_id, start, end = params.ints("id", "start", "end")
        return _json(
            core.edit_marker(
                marker_id,
                start,
                end,
                params.b("userCreated"),
                params.raw("type", None),
                params.b("final") if "final" in params else None,
            )
        )

    @app.post("/delete")
    async def delete(request: Request):
        params = await _parser(request)
        return _json(core.delete_marker(params.i("id")))

    @app.post("/check_shift")
    async def check_shift(request: Request):
        params = await _parser(request)
        start_shift = params.i("startShift")
        return _json(
            core.check_shift(
                params.i("id"),
                start_shift,
                params.i("endShift", start_shift),
                params.i("applyTo", int(MarkerEnum.ALL)),
                params.ia("ignored", []),
            )
        )

    @app.post("/shift")
    async def shift(request: Request):
        params = await _parser(request)
        start_shift = params.i("startShift")
        return _json(
            core.shift(
                params.i("id"),
                start_shift,
                params.i("endShift", start_shift),
                params.i("applyTo", int(MarkerEnum.ALL)),
                params.b("force", False),
                params.ia("ignored", []),
            )
        )

    @app.post("/bulk_delete")
    async def bulk_delete(request: Request):
        params = await _parser(request)
        return _json(
            core.bulk_delete(
                params.i("id"),
                params.b("dryRun", False),
                params.i("applyTo", int(MarkerEnum.ALL)),
                params.ia("ignored", []),
            )
        )

    @app.post("/bulk_add")
    async def bulk_add(request: Request):
        params = await _parser(request)
        root_id, start, end = params.ints("id", "start", "end")
        return _json(
            core.bulk_add(
                root_id,
                start,
                end,
                params.raw("type", "intro"),
                params.b("final", False),
                params.i("resolveType"),
                params.ia("ignored", []),
            )
        )

    @app.post("/add_custom")
    async def add_custom(request: Request):
        params = await _parser(request)
        result = core.add_custom(
            params.i("id"),
            params.raw("type", "intro"),
            params.i("resolveType"),
            _custom_markers(params.raw("markers")),
        )
        body = json.dumps(jsonable_encoder(result)).encode("utf-8")
        return Response(
            content=gzip.compress(body),
            media_type="application/json",
            headers={"Content-Encoding": "gzip"},
        )

    @app.post("/nuke_section")
    async def nuke_section(request: Request):
        params = await _parser(request)
        return _json(core.nuke_section(params.i("sectionId"), params.i("deleteType")))

    # Queries

    @app.post("/query")
    async def query_markers(request: Request):
        params = await _parser(request)
        return _json(query.query_ids(params.ia("keys")))

    @app.post("/get_sections")
    async def get_sections(request: Request):
        return _json(query.get_sections())

    @app.post("/get_section")
    async def get_section(request: Request):
        params = await _parser(request)
        return _json(query.get_section(params.i("id")))

    @app.post("/get_seasons")
    async def get_seasons(request: Request):
        params = await _parser(request)
        return _json(query.get_seasons(params.i("id")))

    @app.post("/get_episodes")
    async def get_episodes(request: Request):
        params = await _parser(request)
        return _json(query.get_episodes(params.i("id")))

    @app.post("/get_chapters")
    async def get_chapters(request: Request):
        params = await _parser(request)
        return _json(query.get_chapters(params.i("id")))

    # Purges

    @app.post("/purge_check")
    async def purge_check(request: Request):
        params = await _parser(request)
        return _json(purge.purge_check(params.i("id")))

    @app.post("/all_purges")
    async def all_purges(request: Request):
        params = await _parser(request)
        return _json(purge.all_purges(params.i("sectionId")))

    @app.post("/restore_purge")
    async def restore_purge(request: Request):
        params = await _parser(request)
        return _json(purge.restore_purge(params.ia("markerIds"), params.i("sectionId")))

    @app.post("/ignore_purge")
    async def ignore_purge(request: Request):
        params = await _parser(request)
        purge.ignore_purge(params.ia("markerIds"), params.i("sectionId"))
        return _json({})

    logger.debug(f"Registered {len(app.routes)} routes")
    return app
