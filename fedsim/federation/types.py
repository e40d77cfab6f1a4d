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

from typing import Dict, List

from typing_extensions import TypedDict


class VerifyKey(TypedDict):
    # unpadded base64 of the raw public key
    key: str


VerifyKeys = Dict[str, VerifyKey]

# key: "signing key identifier"; value: signature encoded as unpadded base 64
Signature = Dict[str, str]


class KeyServerResponse(TypedDict):
    """The body of a /_matrix/key/v2/server response, before it is signed."""

    server_name: str
    verify_keys: VerifyKeys
    old_verify_keys: VerifyKeys
    valid_until_ts: int
    tls_fingerprints: List[Dict[str, str]]
