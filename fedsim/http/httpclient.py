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

import json
import logging
import urllib.parse
from io import BytesIO
from typing import TYPE_CHECKING, Dict, Optional, Tuple, cast

from twisted.internet import defer
from twisted.web.client import URI, Agent, FileBodyProducer
from twisted.web.http_headers import Headers
from twisted.web.iweb import IAgent
from unpaddedbase64 import decode_base64

from fedsim.federation.auth import build_auth_header
from fedsim.federation.errors import (
    HttpResponseException,
    KeyFetchFailed,
    KeyNotFound,
    ServerNameMismatch,
)
from fedsim.federation.identity import Identity
from fedsim.federation.keycache import KeyCache
from fedsim.federation.signer import Signer
from fedsim.http.federation_tls_options import FederationPolicyForHTTPS
from fedsim.http.httpcommon import read_body_with_max_size
from fedsim.types import JsonDict
from fedsim.util import json_decoder
from fedsim.util.stringutils import is_valid_matrix_server_name

if TYPE_CHECKING:
    from fedsim.fedsim import FedSim

logger = logging.getLogger(__name__)

# Key server responses are small; anything bigger than this is refused.
MAX_KEY_RESPONSE_SIZE = 1024 * 50

KEY_SERVER_PATH = "/_matrix/key/v2/server/"


class HTTPClient:
    """A base HTTP class that sends requests through a twisted Agent and
    reads back the responses.
    """

    agent: IAgent

    async def do_request(
        self,
        method: str,
        uri: str,
        headers: Optional[Dict[str, str]] = None,
        body: Optional[bytes] = None,
        max_size: Optional[int] = None,
    ) -> Tuple[int, Headers, bytes]:
        """Make a HTTP request and read the whole response.

        :param method: The HTTP method.
        :param uri: The full URI to send the request to.
        :param headers: Extra headers to send.
        :param body: The request body, if any.
        :param max_size: The maximum size (in bytes) to allow as a response.

        :return: The response's status code, headers and body.
        """
        logger.debug("HTTP %s %s", method, uri)

        raw_headers = Headers()
        for name, value in (headers or {}).items():
            raw_headers.addRawHeader(name, value)

        body_producer = None
        if body is not None:
            body_producer = FileBodyProducer(BytesIO(body))

        response = await self.agent.request(
            method.encode("ascii"),
            uri.encode("utf8"),
            raw_headers,
            bodyProducer=body_producer,
        )
        # Ensure the body object is read otherwise we'll leak HTTP connections
        # as per
        # https://twistedmatrix.com/documents/current/web/howto/client.html
        response_body = await read_body_with_max_size(response, max_size)
        return response.code, response.headers, response_body

    async def request_json(
        self,
        method: str,
        uri: str,
        content: Optional[JsonDict] = None,
        headers: Optional[Dict[str, str]] = None,
        max_size: Optional[int] = None,
    ) -> JsonDict:
        """Make a request, optionally with a JSON body, to an endpoint returning
        a JSON object, and parse the result.

        :param method: The HTTP method.
        :param uri: The full URI to send the request to.
        :param content: An object to send as the JSON request body, if any.
        :param headers: Extra headers to send.
        :param max_size: The maximum size (in bytes) to allow as a response.

        :return: The parsed response body.

        :raises HttpResponseException: if the response code isn't 2xx.
        :raises ValueError: if the response isn't a JSON object.
        """
        headers = dict(headers or {})
        body = None
        if content is not None:
            body = json.dumps(content).encode("utf8")
            headers.setdefault("Content-Type", "application/json")

        code, _, response_body = await self.do_request(
            method, uri, headers, body, max_size
        )
        if not 200 <= code < 300:
            logger.info("%s %s failed with %d", method, uri, code)
            raise HttpResponseException(
                code, "%s %s failed" % (method, uri), response_body
            )

        try:
            json_body = json_decoder.decode(response_body.decode("UTF-8"))
        except Exception:
            logger.warning("Error parsing JSON from %s", uri)
            raise
        if not isinstance(json_body, dict):
            raise ValueError("Response from %s is not a JSON object" % (uri,))
        # Cast safety: json only permits strings as object keys, so `json_body`
        # must be Dict[str, Any] rather than Dict[Any, Any].
        return cast(JsonDict, json_body)

    async def get_json(self, uri: str, max_size: Optional[int] = None) -> JsonDict:
        """Make a GET request to an endpoint returning JSON and parse result

        :param uri: The URI to make a GET request to.

        :param max_size: The maximum size (in bytes) to allow as a response.

        :return: The parsed response body.
        """
        return await self.request_json("GET", uri, max_size=max_size)


class FederationHttpClient(HTTPClient):
    """HTTP client for federation requests. Every request made with
    do_request_json is signed with our identity and carries an X-Matrix
    Authorization header.
    """

    def __init__(self, fedsim: "FedSim") -> None:
        self.fedsim = fedsim
        self.scheme = "https" if fedsim.use_tls_for_federation else "http"
        self.uri_base = fedsim.config.http.federation_uri_base
        self.agent = Agent(
            fedsim.reactor,
            contextFactory=FederationPolicyForHTTPS(
                fedsim.config.http.verify_federation_certs
            ),
            connectTimeout=15,
        )

        self.signer: Optional[Signer] = None
        self.key_cache: Optional[KeyCache] = None

    def configure(
        self,
        identity: Optional[Identity] = None,
        key_cache: Optional[KeyCache] = None,
    ) -> None:
        """
        Sets the identity to sign requests as and the key cache to share with
        the federation server. Either may be omitted to leave it unchanged.
        """
        if identity is not None:
            self.signer = Signer(identity)
        if key_cache is not None:
            self.key_cache = key_cache

    @property
    def identity(self) -> Identity:
        assert self.signer is not None, "Federation client used before configure()"
        return self.signer.identity

    def sign_data(self, data: JsonDict) -> JsonDict:
        assert self.signer is not None, "Federation client used before configure()"
        return self.signer.sign_data(data)

    def get_key(self, server_name: str, key_id: str) -> "defer.Deferred[bytes]":
        """
        Gets a remote server's public key, from the cache if possible.

        :param server_name: The server owning the key.
        :param key_id: The id of the key.

        :return: A deferred resolving to the raw public key.
        """
        assert self.key_cache is not None, "Federation client used before configure()"
        return self.key_cache.get(server_name, key_id, self.fetch_key)

    def full_uri_for(self, uri: str) -> str:
        if uri.startswith("https://") or uri.startswith("http://"):
            return uri
        if not self.uri_base:
            raise ValueError("Relative URI %s given without federation.uri_base" % uri)
        return "%s/%s" % (self.uri_base, uri.lstrip("/"))

    def build_auth_header(
        self, method: str, uri: str, content: Optional[JsonDict] = None
    ) -> str:
        """
        Signs a request and returns the Authorization header which carries
        the signature.

        :param method: The HTTP method of the request.
        :param uri: The full URI the request is sent to.
        :param content: The JSON body of the request, if any. An absent body
            and an empty one are signed differently.

        :return: The value of the Authorization header.
        """
        identity = self.identity
        parsed = URI.fromBytes(uri.encode("utf8"))

        signing_block: JsonDict = {
            "method": method,
            "uri": parsed.originForm.decode("utf8"),
            "origin": identity.name,
            "destination": parsed.netloc.decode("utf8"),
        }
        if content is not None:
            signing_block["content"] = content

        self.sign_data(signing_block)
        sig = signing_block["signatures"][identity.name][identity.key_id]

        return build_auth_header(identity.name, identity.key_id, sig)

    async def do_request_json(
        self,
        method: str,
        uri: str,
        content: Optional[JsonDict] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> JsonDict:
        """Sends a signed federation request and parses the JSON response.

        :param method: The HTTP method.
        :param uri: The URI to send the request to. Relative URIs are
            prefixed with federation.uri_base.
        :param content: An object to send as the JSON request body, if any.
        :param headers: Extra headers to send.

        :return: The parsed response body.
        """
        full_uri = self.full_uri_for(uri)

        request_headers = dict(headers or {})
        request_headers["Authorization"] = self.build_auth_header(
            method, full_uri, content
        )

        return await self.request_json(method, full_uri, content, request_headers)

    async def fetch_key(self, server_name: str, key_id: str) -> bytes:
        """Asks a server's key server for one of its public keys.

        :param server_name: The server to ask.
        :param key_id: The id of the key wanted.

        :return: The raw public key.

        :raises KeyFetchFailed: if the request fails, or the response is
            malformed. ServerNameMismatch and KeyNotFound are raised for
            responses about another server, and responses missing the key.
        """
        if not is_valid_matrix_server_name(server_name):
            raise KeyFetchFailed("Invalid server name '%s'" % (server_name,))

        # The key id comes straight from a request header.
        uri = "%s://%s%s%s" % (
            self.scheme,
            server_name,
            KEY_SERVER_PATH,
            urllib.parse.quote(key_id, safe=":"),
        )
        try:
            result = await self.get_json(uri, MAX_KEY_RESPONSE_SIZE)
        except Exception as e:
            raise KeyFetchFailed(
                "Failed to fetch key %s from %s: %s" % (key_id, server_name, e)
            ) from e

        if result.get("server_name") != server_name:
            raise ServerNameMismatch("Response 'server_name' does not match")

        verify_keys = result.get("verify_keys")
        key_dict = verify_keys.get(key_id) if isinstance(verify_keys, dict) else None
        key = key_dict.get("key") if isinstance(key_dict, dict) else None
        if not isinstance(key, str):
            raise KeyNotFound("Response did not provide key '%s'" % (key_id,))

        try:
            return decode_base64(key)
        except Exception as e:
            raise KeyFetchFailed(
                "Invalid base64 for key %s from %s" % (key_id, server_name)
            ) from e
