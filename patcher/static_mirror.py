"""Static file serving of the synced root with browsable directory listings."""

import asyncio
import html
import os
import stat
from typing import Optional
from urllib.parse import quote

from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles
from starlette.datastructures import URL
from starlette.exceptions import HTTPException
from starlette.responses import Response
from starlette.types import Scope

from common.logging_config import get_logger

logger = get_logger(__name__)


def render_listing(directory: str) -> str:
    """
    Render an HTML index of a directory.

    Entries are sorted by name and subdirectories carry a trailing slash.
    """
    with os.scandir(directory) as it:
        names = sorted(entry.name + ("/" if entry.is_dir() else "") for entry in it)

    lines = ['<!doctype html>', '<meta name="viewport" content="width=device-width">', '<pre>']
    for name in names:
        lines.append(f'<a href="{html.escape(quote(name))}">{html.escape(name)}</a>')
    lines.append('</pre>')
    return "\n".join(lines) + "\n"


class BrowsableStaticFiles(StaticFiles):
    """
    StaticFiles that answers directory requests with a listing.

    A directory requested without a trailing slash is redirected to the
    slash-terminated URL so relative links in the listing resolve.
    """

    def _lookup_directory(self, path: str) -> Optional[str]:
        try:
            full_path, stat_result = self.lookup_path(path)
        except (OSError, ValueError):
            return None
        if stat_result is None or not stat.S_ISDIR(stat_result.st_mode):
            return None
        return full_path

    async def get_response(self, path: str, scope: Scope) -> Response:
        if scope["method"] in ("GET", "HEAD"):
            directory = await asyncio.to_thread(self._lookup_directory, path)
            if directory is not None:
                return await self.directory_response(directory, scope)
        return await super().get_response(path, scope)

    async def directory_response(self, directory: str, scope: Scope) -> Response:
        url = URL(scope=scope)
        if not url.path.endswith("/"):
            return RedirectResponse(url=str(url.replace(path=url.path + "/")), status_code=301)

        try:
            listing = await asyncio.to_thread(render_listing, directory)
        except OSError as e:
            logger.warning(f"Failed to list {directory}: {e}")
            raise HTTPException(status_code=404) from e
        return HTMLResponse(listing)

