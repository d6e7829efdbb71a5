"""Derive a direct download URL from an HTML interstitial page.

Some hosts answer a large-file request with an HTML warning page instead of
the binary. Three strategies are tried in order and the first match wins.
"""

from __future__ import annotations

import html as _html
import re
from dataclasses import dataclass
from urllib.parse import urljoin

from liveupdate.constants import CONFIRM_BYPASS_URL

_FORM_ACTION_RE = re.compile(r'action="([^"]+)"')
_ANCHOR_RE = re.compile(r'href="([^"]*download[^"]*)"')
_URL_ID_RE = re.compile(r"[?&]id=([A-Za-z0-9_-]+)")


def _hidden_field_re(name: str) -> re.Pattern[str]:
    return re.compile(rf'name="{name}" value="([^"]+)"')


_FIELD_RES = {name: _hidden_field_re(name) for name in ("id", "confirm", "uuid")}


@dataclass(frozen=True)
class NoMatch:
    """No strategy recognised the page."""


@dataclass(frozen=True)
class FormBypass:
    """A confirmation form with ``id``/``confirm``/``uuid`` hidden fields."""

    url: str


@dataclass(frozen=True)
class AnchorBypass:
    """A literal link whose target contains ``download``."""

    url: str


@dataclass(frozen=True)
class ConfirmParamBypass:
    """A ``confirm=t`` URL rebuilt from the file id of the original request."""

    url: str


BypassMatch = NoMatch | FormBypass | AnchorBypass | ConfirmParamBypass


def parse_form(page: str, base_url: str) -> FormBypass | None:
    action = _FORM_ACTION_RE.search(page)
    fields = {name: pattern.search(page) for name, pattern in _FIELD_RES.items()}
    if action is None or any(match is None for match in fields.values()):
        return None

    target = urljoin(base_url, _html.unescape(action.group(1)))
    values = {name: match.group(1) for name, match in fields.items() if match is not None}
    return FormBypass(
        f"{target}?id={values['id']}&export=download"
        f"&confirm={values['confirm']}&uuid={values['uuid']}"
    )


def parse_anchor(page: str, base_url: str) -> AnchorBypass | None:
    match = _ANCHOR_RE.search(page)
    if match is None:
        return None
    return AnchorBypass(urljoin(base_url, match.group(1).replace("&amp;", "&")))


def parse_confirm_param(original_url: str) -> ConfirmParamBypass | None:
    match = _URL_ID_RE.search(original_url)
    if match is None:
        return None
    return ConfirmParamBypass(CONFIRM_BYPASS_URL.format(file_id=match.group(1)))


def find_bypass_url(page: str, original_url: str) -> BypassMatch:
    """Return the first bypass recognised in ``page``, or :class:`NoMatch`."""
    return (
        parse_form(page, original_url)
        or parse_anchor(page, original_url)
        or parse_confirm_param(original_url)
        or NoMatch()
    )
