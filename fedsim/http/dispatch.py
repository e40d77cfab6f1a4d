# Copyright 2026 The Matrix.org Foundation C.I.C.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

import logging
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, Union

import attr
from twisted.web.server import Request

from fedsim.federation.errors import DispatchNotFound
from fedsim.http.servlets import dict_to_json_bytes
from fedsim.types import JsonDict

logger = logging.getLogger(__name__)


@attr.s(frozen=True, slots=True, auto_attribs=True)
class RawResponse:
    """A response sent back exactly as given, with no signature added."""

    code: int
    body: bytes = b""
    headers: Dict[str, str] = attr.Factory(dict)

    @classmethod
    def json(cls, code: int, content: JsonDict) -> "RawResponse":
        return cls(
            code=code,
            body=dict_to_json_bytes(content),
            headers={"Content-Type": "application/json"},
        )


@attr.s(frozen=True, slots=True, auto_attribs=True)
class FederationRequest:
    """What a federation handler is given for each request it serves."""

    request: Request
    # The server which signed the request. None for requests which don't
    # need authenticating.
    origin: Optional[str]
    # The decoded JSON body, if the request had one
    content: Optional[JsonDict]
    # The path segments left over after the ones the handler is registered at
    args: List[str]


# A handler either returns a RawResponse, or a JSON object which gets signed
# by the server before being sent back with a 200.
HandlerResult = Union[RawResponse, JsonDict]
Handler = Callable[
    [FederationRequest], Union[HandlerResult, Awaitable[HandlerResult]]
]


def _path_segments(path: Union[str, Sequence[str]]) -> Tuple[str, ...]:
    if isinstance(path, str):
        return tuple(path.strip("/").split("/"))
    return tuple(path)


class HandlerRegistry:
    """Maps path prefixes (below /_matrix/) to the handlers serving them.

    Paths are matched segment by segment, and the longest registered prefix
    of a request's path wins, whatever order the handlers were registered
    in. Prefixes are never tried shortest-first: a handler for
    "federation/v1" does not shadow one for "federation/v1/send".
    """

    def __init__(self) -> None:
        self._handlers: Dict[Tuple[str, ...], Handler] = {}

    def register(self, path: Union[str, Sequence[str]], handler: Handler) -> None:
        """
        :param path: Either a "/"-separated string like "federation/v1/send",
            or a sequence of segments.
        :param handler: The handler to serve the path, and any path under it.
        """
        segments = _path_segments(path)
        if segments in self._handlers:
            logger.warning("Replacing handler for /%s", "/".join(segments))
        self._handlers[segments] = handler

    def resolve(self, segments: Sequence[str]) -> Tuple[Handler, List[str]]:
        """
        Finds the handler for a request path.

        :param segments: The path segments of the request, below /_matrix/.

        :return: The handler, and the path segments after its prefix.

        :raises DispatchNotFound: if no registered prefix matches.
        """
        for i in range(len(segments), 0, -1):
            handler = self._handlers.get(tuple(segments[:i]))
            if handler is not None:
                return handler, list(segments[i:])
        raise DispatchNotFound("No handler for /_matrix/%s" % ("/".join(segments),))
