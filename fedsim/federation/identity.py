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

import attr
import signedjson.key
from signedjson.types import SigningKey
from unpaddedbase64 import encode_base64

logger = logging.getLogger(__name__)


@attr.s(frozen=True, slots=True, auto_attribs=True)
class Identity:
    """The name and signing keypair a server uses to talk over federation.

    public_key and secret_key are the raw ed25519 verify key and seed. The
    secret half never leaves the process.
    """

    name: str
    key_id: str
    public_key: bytes = attr.ib(repr=False)
    secret_key: bytes = attr.ib(repr=False)

    @classmethod
    def from_signing_key(cls, name: str, signing_key: SigningKey) -> "Identity":
        """
        Builds an identity around an existing signedjson signing key.

        :param name: The server name to sign as.
        :param signing_key: The key, with its alg and version set.

        :return: The new identity.
        """
        verify_key = signedjson.key.get_verify_key(signing_key)
        return cls(
            name=name,
            key_id="%s:%s" % (signing_key.alg, signing_key.version),
            public_key=verify_key.encode(),
            secret_key=signing_key.encode(),
        )

    def signing_key(self) -> SigningKey:
        alg, version = self.key_id.split(":", 1)
        return signedjson.key.decode_signing_key_base64(
            alg, version, encode_base64(self.secret_key)
        )


def generate_identity(name: str, key_version: str = "1") -> Identity:
    """
    Creates an identity with a freshly generated ed25519 keypair.

    :param name: The server name to sign as.
    :param key_version: The version part of the key id (ed25519:<version>).

    :return: The new identity.
    """
    signing_key = signedjson.key.generate_signing_key(key_version)
    identity = Identity.from_signing_key(name, signing_key)
    logger.info("Generated signing key %s for %s", identity.key_id, name)
    return identity
