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

from configparser import ConfigParser

import signedjson.key
import signedjson.types

from fedsim.config._base import BaseConfig


class CryptoConfig(BaseConfig):
    def parse_config(self, cfg: "ConfigParser") -> bool:
        """
        Parse the crypto section of the config
        :param cfg: the configuration to be parsed
        """

        signing_key_str = cfg.get("crypto", "ed25519.signingkey")
        signing_key_parts = signing_key_str.split(" ")

        # N.B. `signedjson` expects `nacl.signing.SigningKey` instances which
        # have been monkeypatched to include new `alg` and `version` attributes.
        # This is captured by the `signedjson.types.SigningKey` protocol.
        self.signing_key: signedjson.types.SigningKey

        if signing_key_str == "":
            # Each run gets a fresh key, which is deliberately not written back
            # to the config file.
            self.signing_key = signedjson.key.generate_signing_key(
                cfg.get("crypto", "ed25519.key_version")
            )
        elif len(signing_key_parts) == 3:
            self.signing_key = signedjson.key.decode_signing_key_base64(
                signing_key_parts[0], signing_key_parts[1], signing_key_parts[2]
            )
        else:
            raise ValueError(
                "crypto.ed25519.signingkey must be of the form "
                "'ed25519 <version> <base64 key>'"
            )

        return False
