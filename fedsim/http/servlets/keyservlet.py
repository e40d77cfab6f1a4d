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

import hashlib
import logging
from typing import TYPE_CHECKING, Dict, List, Optional

from OpenSSL import crypto
from twisted.web.server import Request
from unpaddedbase64 import encode_base64

from fedsim.federation.identity import Identity
from fedsim.federation.types import KeyServerResponse
from fedsim.http.dispatch import FederationRequest
from fedsim.types import JsonDict
from fedsim.util import time_msec

if TYPE_CHECKING:
    from fedsim.http.httpcommon import SslComponents
    from fedsim.http.servlets.federationservlet import FederationServlet

logger = logging.getLogger(__name__)

# How long other servers may cache our keys for
KEY_VALIDITY_PERIOD_MS = 24 * 60 * 60 * 1000

TLS_FINGERPRINT_ALGORITHMS = ("sha256",)


def tls_fingerprints(certificate: Optional[crypto.X509]) -> List[Dict[str, str]]:
    """
    Hashes the DER encoding of a certificate with each of the algorithms we
    advertise.

    :param certificate: The certificate, or None if we aren't serving TLS.

    :return: One {algorithm: unpadded base64 hash} object per algorithm.
    """
    if certificate is None:
        return []

    der = crypto.dump_certificate(crypto.FILETYPE_ASN1, certificate)
    return [
        {algo: encode_base64(hashlib.new(algo, der).digest())}
        for algo in TLS_FINGERPRINT_ALGORITHMS
    ]


def make_key_response(
    identity: Identity, certificate: Optional[crypto.X509], now_ms: int
) -> KeyServerResponse:
    """
    Builds the (unsigned) body of a key server response.

    :param identity: The identity whose public key is published.
    :param certificate: The TLS certificate the response is served over.
    :param now_ms: The current time, in milliseconds.
    """
    return {
        "server_name": identity.name,
        "verify_keys": {
            identity.key_id: {"key": encode_base64(identity.public_key)},
        },
        "old_verify_keys": {},
        "valid_until_ts": now_ms + KEY_VALIDITY_PERIOD_MS,
        "tls_fingerprints": tls_fingerprints(certificate),
    }


class KeyServerHandler:
    """Answers GET /_matrix/key/v2/server/<key_id> with our public key.

    The response is signed by the federation servlet like any other JSON
    handler result.
    """

    def __init__(
        self, servlet: "FederationServlet", ssl_components: "SslComponents"
    ) -> None:
        self.servlet = servlet
        self.ssl_components = ssl_components

    def __call__(self, fed_request: FederationRequest) -> JsonDict:
        certificate = self._get_certificate(fed_request.request)
        if certificate is None:
            logger.warning("Serving keys without a TLS certificate to fingerprint")

        response = make_key_response(self.servlet.identity, certificate, time_msec())
        return dict(response)

    def _get_certificate(self, request: Request) -> Optional[crypto.X509]:
        # On a TLS connection the transport's handle is the pyOpenSSL
        # connection, which knows which certificate it presented.
        transport = getattr(request.channel, "transport", None)
        get_handle = getattr(transport, "getHandle", None)
        if get_handle is not None:
            get_certificate = getattr(get_handle(), "get_certificate", None)
            if get_certificate is not None:
                certificate = get_certificate()
                if certificate is not None:
                    return certificate

        private_certificate = self.ssl_components.myPrivateCertificate
        if private_certificate is not None:
            return private_certificate.original
        return None
