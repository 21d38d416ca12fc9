"""Shared fixtures.

The network is replaced by a ``MagicMock`` session whose ``get`` routes URLs
to real ``requests.Response`` objects backed by an in-memory body, so
streaming, ``.text`` decoding and ``close()`` behave as they do for real
responses.
"""
from __future__ import annotations

import io
from typing import Callable, Dict, Union
from unittest.mock import MagicMock

import pytest
import requests

Route = Union[int, tuple, Exception]


def make_response(url: str, status: int = 200, body: str = "") -> requests.Response:
    resp = requests.Response()
    resp.status_code = status
    resp.url = url
    resp.encoding = "utf-8"
    resp.headers["Content-Type"] = "text/html; charset=utf-8"
    resp.raw = io.BytesIO(body.encode("utf-8"))
    return resp


@pytest.fixture
def make_session() -> Callable[[Dict[str, Route]], MagicMock]:
    """Build a stub session from ``{url: status | (status, body) | exception}``.

    URLs without a route answer 404.
    """

    def factory(routes: Dict[str, Route]) -> MagicMock:
        session = MagicMock(spec=requests.Session)

        def get(url, **kwargs):
            route = routes.get(url, 404)
            if isinstance(route, Exception):
                raise route
            status, body = route if isinstance(route, tuple) else (route, "")
            return make_response(url, status, body)

        session.get.side_effect = get
        return session

    return factory
