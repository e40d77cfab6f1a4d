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
from typing import Callable

import idna
from OpenSSL import SSL
from twisted.internet import ssl
from twisted.internet.abstract import isIPAddress, isIPv6Address
from twisted.internet.interfaces import IOpenSSLClientConnectionCreator
from twisted.protocols.tls import TLSMemoryBIOProtocol
from twisted.python.failure import Failure
from twisted.web.client import BrowserLikePolicyForHTTPS
from twisted.web.iweb import IPolicyForHTTPS
from zope.interface import implementer

logger = logging.getLogger(__name__)

F = Callable[[SSL.Connection, int, int], None]


def _tolerateErrors(wrapped: F) -> F:
    """
    Wrap up an info_callback for pyOpenSSL so that if something goes wrong
    the error is immediately logged and the connection is dropped if possible.
    This is a copy of twisted.internet._sslverify._tolerateErrors.
    """

    def infoCallback(connection: SSL.Connection, where: int, ret: int) -> None:
        try:
            return wrapped(connection, where, ret)
        except BaseException:
            f = Failure()
            logger.exception("Error during info_callback")
            connection.get_app_data().failVerification(f)

    return infoCallback


@implementer(IOpenSSLClientConnectionCreator)
class ClientTLSOptions:
    """
    Client creator for TLS without certificate identity verification. Servers
    under test generally present self-signed certificates, which is fine as
    long as they sign their requests and keys properly.
    """

    def __init__(self, hostname: str, ctx: SSL.Context):
        self._ctx = ctx

        if isIPAddress(hostname) or isIPv6Address(hostname):
            self._hostnameBytes = hostname.encode("ascii")
            self._sendSNI = False
        else:
            self._hostnameBytes = idna.encode(hostname)
            self._sendSNI = True

        ctx.set_info_callback(_tolerateErrors(self._sniInfoCallback))

    def clientConnectionForTLS(
        self, tlsProtocol: TLSMemoryBIOProtocol
    ) -> SSL.Connection:
        connection = SSL.Connection(self._ctx, None)
        connection.set_app_data(tlsProtocol)
        return connection

    def _sniInfoCallback(
        self, connection: SSL.Connection, where: int, ret: int
    ) -> None:
        # Literal IPv4 and IPv6 addresses are not permitted
        # as host names according to the RFCs
        if where & SSL.SSL_CB_HANDSHAKE_START and self._sendSNI:
            connection.set_tlsext_host_name(self._hostnameBytes)


@implementer(IPolicyForHTTPS)
class FederationPolicyForHTTPS:
    """Decides how outbound federation connections check the remote server's
    certificate.

    :param verify_requests: Whether to check certificates against the
        platform's trust roots.
    """

    def __init__(self, verify_requests: bool):
        self._verify_requests = verify_requests
        self._browser_policy = BrowserLikePolicyForHTTPS()
        self._options = ssl.CertificateOptions()

    def creatorForNetloc(
        self, hostname: bytes, port: int
    ) -> IOpenSSLClientConnectionCreator:
        if self._verify_requests:
            return self._browser_policy.creatorForNetloc(hostname, port)
        # Use _makeContext so that we get a fresh OpenSSL CTX each time.
        return ClientTLSOptions(hostname.decode("ascii"), self._options._makeContext())
