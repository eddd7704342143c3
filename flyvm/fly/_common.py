"""HTTP plumbing shared by the machines and logs API clients."""

from __future__ import annotations

from typing import Any, Iterable

import requests
from loguru import logger

from .. import __version__
from ..errors import RemoteAPIError

log = logger

USER_AGENT = f'flyvm/{__version__}'


def auth_header(token: str) -> str:
    token = token.strip()
    # Macaroon tokens already carry their scheme.
    if token.startswith('FlyV1 ') or token.startswith('Bearer '):
        return token
    return f'Bearer {token}'


def new_session(token: str) -> requests.Session:
    session = requests.Session()
    session.headers.update(
        {
            'Authorization': auth_header(token),
            'User-Agent': USER_AGENT,
            'Accept': 'application/json',
        }
    )
    return session


def send(
    session: requests.Session,
    method: str,
    url: str,
    *,
    ok: Iterable[int] = (200,),
    timeout_s: float = 30,
    **kwargs: Any,
) -> requests.Response:
    """Send one request and raise RemoteAPIError unless the status is in ``ok``."""
    log.debug('HTTP {} {}', method, url)
    try:
        resp = session.request(method, url, timeout=timeout_s, **kwargs)
    except requests.RequestException as ex:
        raise RemoteAPIError(0, str(ex), method=method, path=url) from ex
    if resp.status_code not in set(ok):
        log.debug(
            'HTTP {} {} failed status={} body={}',
            method,
            url,
            resp.status_code,
            resp.text[:500],
        )
        raise RemoteAPIError(
            resp.status_code, resp.text, method=method, path=url
        )
    return resp
