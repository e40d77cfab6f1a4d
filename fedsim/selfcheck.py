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
from typing import TYPE_CHECKING

from unpaddedbase64 import decode_base64

from fedsim.federation.errors import SignatureInvalid
from fedsim.federation.signer import verify_json
from fedsim.http.httpclient import KEY_SERVER_PATH, MAX_KEY_RESPONSE_SIZE
from fedsim.util import time_msec

if TYPE_CHECKING:
    from fedsim.http.httpclient import FederationHttpClient

logger = logging.getLogger(__name__)


class SelfCheckFailed(Exception):
    """Raised when our own key server doesn't answer as it should."""

    pass


async def check_local_key_server(
    client: "FederationHttpClient", server_name: str, key_id: str
) -> None:
    """Queries our own key server and checks the answer is one a remote
    server would accept. If this fails, the fault is in the simulated server
    rather than in whatever it's being used to test.

    :param client: The client to make the query with.
    :param server_name: Our server name.
    :param key_id: The id of our signing key.

    :raises SelfCheckFailed: if the response isn't right.
    """
    uri = "%s://%s%s%s" % (client.scheme, server_name, KEY_SERVER_PATH, key_id)
    body = await client.get_json(uri, MAX_KEY_RESPONSE_SIZE)
    logger.debug("Keyserver response: %r", body)

    for field in (
        "server_name",
        "valid_until_ts",
        "verify_keys",
        "signatures",
        "tls_fingerprints",
    ):
        if field not in body:
            raise SelfCheckFailed("Key server response lacks '%s'" % (field,))

    if body["server_name"] != server_name:
        raise SelfCheckFailed("Expected server_name to be %s" % (server_name,))

    valid_until_ts = body["valid_until_ts"]
    if not isinstance(valid_until_ts, int) or valid_until_ts <= time_msec():
        raise SelfCheckFailed("Key valid_until_ts is in the past")

    verify_keys = body["verify_keys"]
    key = verify_keys.get(key_id) if isinstance(verify_keys, dict) else None
    if not isinstance(key, dict) or not isinstance(key.get("key"), str):
        raise SelfCheckFailed(
            "Expected to find the '%s' key in verify_keys" % (key_id,)
        )
    try:
        public_key = decode_base64(key["key"])
    except Exception:
        raise SelfCheckFailed("Key '%s' is not valid base64" % (key_id,))

    try:
        verify_json(body, public_key, server_name, key_id)
    except SignatureInvalid as e:
        raise SelfCheckFailed("Key server response signature: %s" % (e,))

    fingerprints = body["tls_fingerprints"]
    if not isinstance(fingerprints, list) or not fingerprints:
        raise SelfCheckFailed("Expected some tls_fingerprints")
    if not all(isinstance(f, dict) for f in fingerprints):
        raise SelfCheckFailed("tls_fingerprints entries must be objects")

    logger.info("Local federation server at %s looks OK", server_name)
