"""Tile server routes for cached mosaic pyramids."""

from fastapi import APIRouter, Depends, Request, Response

from app.api.v1.features.imagery.mosaic.deps import get_tile_server
from app.api.v1.features.imagery.mosaic.errors import (
    InvalidRequestError,
    NotFoundError,
    invalid_request_error,
    not_found_error,
)
from app.api.v1.features.imagery.tiles.service import TileServer

router = APIRouter(prefix="/tiles", tags=["tiles"])


@router.get(
    "/{mosaic_hash}/{zoom}/{x}/{y}.{format}",
    responses={
        200: {
            "content": {"image/png": {}, "image/jpeg": {}, "image/webp": {}},
            "description": "Tile image",
        },
        304: {"description": "Tile unchanged"},
        400: {"description": "Invalid tile coordinates or unsupported format"},
        404: {"description": "Mosaic or tile not found"},
    },
)
async def get_mosaic_tile(
    mosaic_hash: str,
    zoom: str,
    x: str,
    y: str,
    format: str,
    request: Request,
    server: TileServer = Depends(get_tile_server),
) -> Response:
    """
    Get a tile from a cached mosaic.

    Args:
        mosaic_hash: Mosaic hash
        zoom: Zoom level
        x: Tile X coordinate
        y: Tile Y coordinate
        format: png, jpg or webp

    Returns:
        Tile image, cacheable forever
    """
    try:
        tile = await server.get_tile(mosaic_hash, zoom, x, y, format)
    except InvalidRequestError as e:
        raise invalid_request_error(e)
    except NotFoundError as e:
        raise not_found_error(e)

    # Check if client has cached version
    if_none_match = request.headers.get("if-none-match")
    if if_none_match and if_none_match.strip('"') == tile.etag:
        return Response(status_code=304, headers=tile.headers)

    return Response(
        content=tile.content, media_type=tile.media_type, headers=tile.headers
    )
