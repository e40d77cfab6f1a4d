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

import signedjson.key
import signedjson.sign
from signedjson.sign import SignatureVerifyException

from fedsim.federation.errors import SignatureInvalid
from fedsim.federation.identity import Identity
from fedsim.types import JsonDict

logger = logging.getLogger(__name__)


def sign_json(data: JsonDict, identity: Identity) -> JsonDict:
    """
    Signs a JSON object with the given identity's key. The signature is
    computed over the canonical JSON form of the object, leaving out any
    existing 'signatures' and 'unsigned' fields, and is added to the object
    under signatures[identity.name][identity.key_id].

    :param data: The object to sign. It is modified in place.
    :param identity: The identity to sign as.

    :return: The signed object.
    """
    return signedjson.sign.sign_json(data, identity.name, identity.signing_key())


def verify_json(
    data: JsonDict, public_key: bytes, server_name: str, key_id: str
) -> None:
    """
    Checks the signature made by the given server and key on a JSON object.

    :param data: The signed object.
    :param public_key: The raw public key the object is claimed to be signed with.
    :param server_name: The name of the server which signed the object.
    :param key_id: The id of the key the server signed the object with.

    :raises SignatureInvalid: if the signature is absent or doesn't verify.
    """
    try:
        verify_key = signedjson.key.decode_verify_key_bytes(key_id, public_key)
    except ValueError as e:
        raise SignatureInvalid("Unusable key %s for %s: %s" % (key_id, server_name, e))

    signatures = data.get("signatures")
    if not isinstance(signatures, dict):
        raise SignatureInvalid("No signatures on this object")
    if not isinstance(signatures.get(server_name), dict):
        raise SignatureInvalid("Missing signature for %s, %s" % (server_name, key_id))

    try:
        signedjson.sign.verify_signed_json(data, server_name, verify_key)
    except SignatureVerifyException as e:
        raise SignatureInvalid(str(e))


class Signer:
    """Signs JSON objects on behalf of a single identity."""

    def __init__(self, identity: Identity) -> None:
        self.identity = identity

    def sign_data(self, data: JsonDict) -> JsonDict:
        return sign_json(data, self.identity)

    def verify(self, data: JsonDict) -> None:
        """
        Checks an object carries a valid signature from our own identity.

        :raises SignatureInvalid: if it doesn't.
        """
        verify_json(
            data, self.identity.public_key, self.identity.name, self.identity.key_id
        )
