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

import inspect
import logging
from typing import TYPE_CHECKING, List, Optional, Tuple

from twisted.internet import defer
from twisted.web import server
from twisted.web.server import Request

from fedsim.federation.auth import parse_auth_header
from fedsim.federation.errors import (
    UNAUTHORIZED_ERRCODE,
    DispatchNotFound,
    FederationAuthError,
    KeyFetchFailed,
    OriginMismatch,
)
from fedsim.federation.identity import Identity
from fedsim.federation.keycache import KeyCache
from fedsim.federation.signer import Signer, verify_json
from fedsim.http.dispatch import (
    FederationRequest,
    HandlerRegistry,
    RawResponse,
)
from fedsim.http.servlets import FedSimResource, MatrixRestError
from fedsim.types import JsonDict
from fedsim.util import json_decoder

if TYPE_CHECKING:
    from fedsim.fedsim import FedSim
    from fedsim.http.httpclient import FederationHttpClient

logger = logging.getLogger(__name__)

# Requests under /_matrix/key/ are how servers find out each other's keys, so
# they can't be required to be signed.
KEY_PATH_PREFIX = ("key",)


class FederationServlet(FedSimResource):
    """Serves everything under /_matrix/.

    Each request other than a key request must be signed by the server it
    claims to come from. Once its signature is checked, it is passed to the
    handler registered for its path.
    """

    isLeaf = True

    def __init__(self, fedsim: "FedSim", registry: HandlerRegistry) -> None:
        super().__init__()
        self.fedsim = fedsim
        self.registry = registry

        self.signer: Optional[Signer] = None
        self.key_cache: Optional[KeyCache] = None
        self.client: Optional["FederationHttpClient"] = None

    def configure(
        self,
        identity: Optional[Identity] = None,
        key_cache: Optional[KeyCache] = None,
        client: Optional["FederationHttpClient"] = None,
    ) -> None:
        """
        Sets the identity to sign responses as, the key cache to share with the
        federation client, and the client to fetch unknown keys with. Any of
        them may be omitted to leave it unchanged.
        """
        if identity is not None:
            self.signer = Signer(identity)
        if key_cache is not None:
            self.key_cache = key_cache
        if client is not None:
            self.client = client

    @property
    def identity(self) -> Identity:
        assert self.signer is not None, "Federation server used before configure()"
        return self.signer.identity

    def sign_data(self, data: JsonDict) -> JsonDict:
        assert self.signer is not None, "Federation server used before configure()"
        return self.signer.sign_data(data)

    def get_key(self, server_name: str, key_id: str) -> "defer.Deferred[bytes]":
        """
        Gets a remote server's public key, asking that server for it through
        the federation client if it isn't cached.

        :param server_name: The server owning the key.
        :param key_id: The id of the key.

        :return: A deferred resolving to the raw public key.
        """
        assert self.key_cache is not None, "Federation server used before configure()"
        assert self.client is not None, "Federation server used before configure()"
        return self.key_cache.get(server_name, key_id, self.client.fetch_key)

    def render_GET(self, request: Request) -> object:
        defer.ensureDeferred(self._async_render(request))
        return server.NOT_DONE_YET

    render_PUT = render_GET
    render_POST = render_GET
    render_DELETE = render_GET

    async def _async_render(self, request: Request) -> None:
        logger.debug("Incoming federation request %s %s", request.method, request.uri)

        try:
            response = await self._handle_request(request)
        except FederationAuthError as e:
            logger.info("Rejecting request to %s: %s", request.uri, e.msg)
            response = RawResponse.json(
                403, {"errcode": UNAUTHORIZED_ERRCODE, "error": e.msg}
            )
        except DispatchNotFound as e:
            logger.info("%s", e)
            response = RawResponse(404)
        except MatrixRestError as e:
            response = RawResponse.json(
                e.httpStatus, {"errcode": e.errcode, "error": e.error}
            )
        except Exception:
            logger.exception("Federation request processing failed")
            response = RawResponse.json(
                500, {"errcode": "M_UNKNOWN", "error": "Internal Server Error"}
            )

        request.setResponseCode(response.code)
        for name, value in response.headers.items():
            request.setHeader(name, value)
        request.setHeader("Content-Length", str(len(response.body)))
        request.write(response.body)
        request.finish()

    async def _handle_request(self, request: Request) -> RawResponse:
        try:
            segments: List[str] = [s.decode("utf-8") for s in request.postpath]
        except UnicodeDecodeError:
            raise MatrixRestError(400, "M_UNRECOGNIZED", "Path is not valid UTF-8")

        origin = None
        content = None
        if tuple(segments[: len(KEY_PATH_PREFIX)]) != KEY_PATH_PREFIX:
            origin, content = await self.authenticate_request(request)

        handler, args = self.registry.resolve(segments)
        result = handler(FederationRequest(request, origin, content, args))
        if inspect.isawaitable(result):
            result = await result

        if isinstance(result, RawResponse):
            return result
        return RawResponse.json(200, self.sign_data(result))

    async def authenticate_request(
        self, request: Request
    ) -> Tuple[str, Optional[JsonDict]]:
        """Checks the X-Matrix signature on a federation request.

        :param request: The request to authenticate.

        :return: The server which signed the request, and the request's
            decoded JSON body if it had one.

        :raises FederationAuthError: if the request isn't properly signed.
        :raises MatrixRestError: if the request body isn't JSON.
        """
        origin, key_id, sig = parse_auth_header(
            request.getHeader("Authorization") or ""
        )

        to_verify: JsonDict = {
            "method": request.method.decode("ascii"),
            "uri": request.uri.decode("utf-8"),
            "origin": origin,
            "destination": self.identity.name,
            "signatures": {origin: {key_id: sig}},
        }

        content = None
        body = request.content.read()
        if body:
            try:
                content = json_decoder.decode(body.decode("UTF-8"))
            except ValueError:
                raise MatrixRestError(400, "M_NOT_JSON", "Content not JSON.")

            if not isinstance(content, dict) or content.get("origin") != origin:
                raise OriginMismatch(
                    "'origin' in Authorization header does not match content"
                )
            to_verify["content"] = content

        try:
            public_key = await self.get_key(origin, key_id)
        except KeyFetchFailed:
            raise
        except Exception as e:
            raise KeyFetchFailed(
                "Failed to fetch key %s from %s: %s" % (key_id, origin, e)
            ) from e

        verify_json(to_verify, public_key, origin, key_id)

        logger.info("Verified request from %s with key %s", origin, key_id)
        return origin, content
