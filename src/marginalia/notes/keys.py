"""Storage key derivation for the local cache and the remote store.

Local dialect:   notes:browser, notes:domain:<domain>, notes:subdomain:<host>,
                 notes:page:<host><path>
Remote dialect:  browser, domain_<domain>, subdomain_<host>, page_<host><path>
                 with every "/" in the path replaced by "~"
"""

from __future__ import annotations

from marginalia.notes.context import derive_domain
from marginalia.notes.types import NoteScope, UrlContext

LOCAL_PREFIX = "notes"


def escape_path(path: str) -> str:
    """Remote document ids may not contain "/"."""
    return path.replace("/", "~")


def get_storage_key(scope: NoteScope | str, context: UrlContext) -> str:
    """Local-cache key for (scope, context)."""
    scope = NoteScope.coerce(scope)
    if scope is NoteScope.DOMAIN:
        return f"{LOCAL_PREFIX}:domain:{context.domain}"
    if scope is NoteScope.SUBDOMAIN:
        return f"{LOCAL_PREFIX}:subdomain:{context.subdomain}"
    if scope is NoteScope.PAGE:
        return f"{LOCAL_PREFIX}:page:{context.subdomain}{context.path}"
    return f"{LOCAL_PREFIX}:browser"


def build_remote_key(scope: NoteScope | str, context: UrlContext) -> str:
    """Remote document id for (scope, context)."""
    scope = NoteScope.coerce(scope)
    if scope is NoteScope.DOMAIN:
        return f"domain_{context.domain}"
    if scope is NoteScope.SUBDOMAIN:
        return f"subdomain_{context.subdomain}"
    if scope is NoteScope.PAGE:
        return f"page_{context.subdomain}{escape_path(context.path)}"
    return "browser"


def parse_legacy_key(key: str) -> tuple[NoteScope, UrlContext] | None:
    """Recover (scope, context fragment) from a single-tier cache key.

    Returns None for keys that do not follow the ``notes:<scope>[:<discriminator>]``
    shape. Page discriminators are ``<host><path>`` and may contain ":".
    """
    parts = key.split(":")
    if len(parts) < 2 or parts[0] != LOCAL_PREFIX:
        return None

    scope_name = parts[1]
    discriminator = ":".join(parts[2:])

    if scope_name == NoteScope.BROWSER.value:
        return NoteScope.BROWSER, UrlContext(url="", domain="", subdomain="", path="", full_path="")
    if not discriminator:
        return None
    if scope_name == NoteScope.DOMAIN.value:
        return NoteScope.DOMAIN, UrlContext(
            url="", domain=discriminator, subdomain=discriminator, path="", full_path=""
        )
    if scope_name == NoteScope.SUBDOMAIN.value:
        return NoteScope.SUBDOMAIN, UrlContext(
            url="",
            domain=derive_domain(discriminator),
            subdomain=discriminator,
            path="",
            full_path="",
        )
    if scope_name == NoteScope.PAGE.value:
        host, sep, rest = discriminator.partition("/")
        path = sep + rest
        return NoteScope.PAGE, UrlContext(
            url="",
            domain=derive_domain(host),
            subdomain=host,
            path=path,
            full_path=path,
        )
    return None
