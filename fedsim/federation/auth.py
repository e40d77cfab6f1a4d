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

import re
from typing import Dict, Tuple

from fedsim.federation.errors import MissingAuthParam

AUTH_SCHEME = "X-Matrix"

_scheme_regex = re.compile(r"^X-Matrix\s+(.*)$", flags=re.DOTALL)


def build_auth_header(origin: str, key_id: str, sig: str) -> str:
    """
    Builds the value of an "Authorization: X-Matrix ..." header.

    Some servers won't accept whitespace between the parameters, so none is
    emitted.

    :param origin: The name of the server making the request.
    :param key_id: The id of the key the request was signed with.
    :param sig: The unpadded base64 signature of the request.

    :return: The header value.
    """
    params = [("origin", origin), ("key", key_id), ("sig", sig)]
    return "%s %s" % (
        AUTH_SCHEME,
        ",".join('%s="%s"' % (name, value) for name, value in params),
    )


def _strip_quotes(value: str) -> str:
    if len(value) >= 2 and value.startswith('"') and value.endswith('"'):
        return value[1:-1]
    return value


def parse_auth_header(header_str: str) -> Tuple[str, str, str]:
    """
    Extracts a server name, signing key and payload signature from an
    "Authorization: X-Matrix ..." header.

    :param header_str: The content of the header, starting at "X-Matrix".
        For example, `X-Matrix origin=origin.example.com,key="ed25519:key1",sig="ABCDEF..."`

    :return: The server name, the signing key, and the payload signature.

    :raises MissingAuthParam: if the header did not meet the expected format.
    """
    m = _scheme_regex.match(header_str)
    if m is None:
        raise MissingAuthParam("No Authorization of scheme X-Matrix")

    param_dict: Dict[str, str] = {}
    for kv in m.group(1).split(","):
        kv = kv.strip()
        if not kv:
            continue
        name, sep, value = kv.partition("=")
        if not sep:
            raise MissingAuthParam("Malformed X-Matrix Authorization parameter")
        param_dict[name.strip()] = _strip_quotes(value.strip())

    for name in ("origin", "key", "sig"):
        if not param_dict.get(name):
            raise MissingAuthParam(
                "Missing '%s' parameter to X-Matrix Authorization" % (name,)
            )

    return param_dict["origin"], param_dict["key"], param_dict["sig"]
