"""Rewrite asset references in exported HTML.

HTML exports point their images and scripts at the JasperServer that
rendered them. Two rewrite modes make the output usable elsewhere:

``ProxyRewrite``
    Route every ``src`` through an application endpoint that fetches the
    asset with the caller's session, e.g.
    ``asset.php&jsessionid=S1&uri=report/image1.png``.
``ReplacementRewrite``
    Point ``src`` values at cached attachment files, using a mapping
    built while the attachments were cached.

Both modes can suppress the jQuery build bundled with HTML exports,
which host applications usually load themselves.
"""

from __future__ import annotations

import collections.abc as cabc
import dataclasses as dc
import re
import typing as typ

JQUERY_MARKER = "jquery/js/jquery-"
JQUERY_TAG = (
    "<script type='text/javascript' "
    "src='/jasperserver/scripts/jquery/js/jquery-1.7.1.min.js'></script>"
)

_SRC_ATTRIBUTE = re.compile(r"""(\bsrc=)(["'])(.*?)\2""", re.IGNORECASE)


@dc.dataclass(frozen=True, slots=True)
class ProxyRewrite:
    """Rewrite every asset to go through ``asset_url``."""

    asset_url: str
    session_id: str = ""
    remove_jquery: bool = True


@dc.dataclass(frozen=True, slots=True)
class ReplacementRewrite:
    """Rewrite assets found in ``replacements``.

    With ``default_src`` the final path segment of each ``src`` is looked
    up, which matches the server's default attachment URLs. Otherwise the
    full ``src`` value must equal a key.
    """

    replacements: cabc.Mapping[str, str]
    default_src: bool = True
    remove_jquery: bool = True


RewriteMode: typ.TypeAlias = ProxyRewrite | ReplacementRewrite


def _is_jquery(src: str) -> bool:
    return JQUERY_MARKER in src


def _proxy_target(mode: ProxyRewrite, src: str) -> str:
    if mode.remove_jquery and _is_jquery(src):
        return ""
    return f"{mode.asset_url}&jsessionid={mode.session_id}&uri={src}"


def _replacement_target(mode: ReplacementRewrite, src: str) -> str | None:
    if mode.default_src:
        if _is_jquery(src):
            return None
        return mode.replacements.get(src.rsplit("/", 1)[-1])
    return mode.replacements.get(src)


def rewrite_links(html: str, mode: RewriteMode) -> str:
    """Return ``html`` with asset references rewritten according to ``mode``.

    Every occurrence of the same ``src`` value is rewritten identically in
    a single pass; assets without a replacement are left untouched.
    """

    def substitute(match: re.Match[str]) -> str:
        prefix, quote, src = match.group(1), match.group(2), match.group(3)
        if isinstance(mode, ProxyRewrite):
            target: str | None = _proxy_target(mode, src)
        else:
            target = _replacement_target(mode, src)
        if target is None:
            return match.group(0)
        return f"{prefix}{quote}{target}{quote}"

    rewritten = _SRC_ATTRIBUTE.sub(substitute, html)
    if isinstance(mode, ReplacementRewrite) and mode.remove_jquery:
        rewritten = rewritten.replace(JQUERY_TAG, "")
    return rewritten


__all__ = [
    "JQUERY_MARKER",
    "JQUERY_TAG",
    "ProxyRewrite",
    "ReplacementRewrite",
    "RewriteMode",
    "rewrite_links",
]
