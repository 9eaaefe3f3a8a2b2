"""SVG placeholder images for the web client."""
from fastapi import APIRouter
from fastapi.responses import Response

from createtree.utils.placeholder import render_placeholder_svg

router = APIRouter()

NO_CACHE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, private",
    "Pragma": "no-cache",
    "Expires": "0",
}


@router.get("/placeholder")
def placeholder(style: str | None = None, text: str | None = None, error: bool = False):
    svg = render_placeholder_svg(style=style, text=text, error=error)
    return Response(content=svg, media_type="image/svg+xml", headers=NO_CACHE_HEADERS)
