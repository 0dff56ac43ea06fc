"""Turn a short code into what the client should get back.

The HTTP layer only translates the returned action into a response; every
decision (including the HTML-or-image negotiation for shared images) lives
here so it can be exercised without a server.
"""

from dataclasses import dataclass

import crud
from config import IMAGE_EXTENSIONS, mime_for
from sqlalchemy.orm import Session
from uploads import extension_of

PREVIEW_TITLE = "Shared Image"
PREVIEW_DESCRIPTION = "Shared via shortdrop"


@dataclass(frozen=True)
class RedirectPermanent:
    url: str


@dataclass(frozen=True)
class RenderPreview:
    image_url: str
    page_url: str
    title: str
    description: str


@dataclass(frozen=True)
class RenderFileInfo:
    filename: str
    file_url: str
    mime: str


@dataclass(frozen=True)
class NotFound:
    reason: str = "Not found"


Action = RedirectPermanent | RenderPreview | RenderFileInfo | NotFound


def short_url(base_url: str, code: str) -> str:
    return f"{base_url.rstrip('/')}/s/{code}"


def file_url(base_url: str, filename: str) -> str:
    return f"{base_url.rstrip('/')}/files/{filename}"


def wants_html(accept_header: str | None) -> bool:
    """True if the Accept header asks for an HTML page (browser navigation).

    Image fetchers (markdown renderers, chat unfurlers, curl) either omit
    text/html or send only image/* ranges; those get the raw file instead.
    """
    for media_range in (accept_header or "").lower().split(","):
        media_type, *params = [part.strip() for part in media_range.split(";")]
        if media_type != "text/html":
            continue
        q = 1.0
        for param in params:
            key, _, value = param.partition("=")
            if key.strip() == "q":
                try:
                    q = float(value)
                except ValueError:
                    q = 0.0
        if q > 0:
            return True
    return False


def is_image(filename: str) -> bool:
    return extension_of(filename) in IMAGE_EXTENSIONS


def resolve(db: Session, code: str, accept_header: str | None, base_url: str) -> Action:
    item = crud.get_item(db, code)
    if item is None:
        return NotFound()

    if item.kind == "url":
        return RedirectPermanent(item.value)

    if item.kind == "file":
        url = file_url(base_url, item.value)
        if is_image(item.value):
            if not wants_html(accept_header):
                return RedirectPermanent(url)
            return RenderPreview(
                image_url=url,
                page_url=short_url(base_url, code),
                title=PREVIEW_TITLE,
                description=PREVIEW_DESCRIPTION,
            )
        return RenderFileInfo(filename=item.value, file_url=url, mime=mime_for(item.value))

    return NotFound()
