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
from typing import TYPE_CHECKING, List, Optional, cast

import twisted.internet.ssl
from twisted.internet import defer, protocol
from twisted.internet.interfaces import ITCPTransport
from twisted.internet.protocol import connectionDone
from twisted.python.failure import Failure
from twisted.web import server
from twisted.web.client import ResponseDone
from twisted.web.http import PotentialDataLoss
from twisted.web.iweb import UNKNOWN_LENGTH, IResponse

if TYPE_CHECKING:
    from fedsim.fedsim import FedSim


logger = logging.getLogger(__name__)


# Arbitrarily limited to 512 KiB.
MAX_REQUEST_SIZE = 512 * 1024


class SslComponents:
    def __init__(self, fedsim: "FedSim") -> None:
        self.fedsim = fedsim

        self.myPrivateCertificate = self.makeMyCertificate()

    def makeMyCertificate(self) -> Optional[twisted.internet.ssl.PrivateCertificate]:
        privKeyAndCertFilename = self.fedsim.config.http.cert_file

        if privKeyAndCertFilename == "":
            logger.warning(
                "No HTTPS private key / cert found: serving federation over plain HTTP"
            )
            return None

        try:
            fp = open(privKeyAndCertFilename)
        except OSError:
            logger.warning(
                "Unable to read private key / cert file from %s: serving federation "
                "over plain HTTP",
                privKeyAndCertFilename,
            )
            return None

        with fp:
            authData = fp.read()
        return twisted.internet.ssl.PrivateCertificate.loadPEM(authData)


class BodyExceededMaxSize(Exception):
    """The maximum allowed size of the HTTP body was exceeded."""


class _MaxSizeBodyReader(protocol.Protocol):
    """Collects a response body, failing once it grows past max_size bytes.

    If the response already declared a length over the limit, the body is
    refused as soon as anything arrives.
    """

    transport: ITCPTransport

    def __init__(
        self,
        deferred: "defer.Deferred[bytes]",
        max_size: Optional[int],
        refuse: bool = False,
    ) -> None:
        self.deferred = deferred
        self.max_size = max_size
        self.refuse = refuse
        self.chunks: List[bytes] = []
        self.length = 0

    def _fail(self) -> None:
        self.deferred.errback(BodyExceededMaxSize())
        # Nothing more from this connection will be used.
        if self.transport is not None:
            self.transport.abortConnection()

    def dataReceived(self, data: bytes) -> None:
        if self.deferred.called:
            return
        if self.refuse:
            self._fail()
            return

        self.chunks.append(data)
        self.length += len(data)
        if self.max_size is not None and self.length > self.max_size:
            self._fail()

    def connectionLost(self, reason: Failure = connectionDone) -> None:
        if self.deferred.called:
            return
        if self.refuse:
            self._fail()
        elif reason.check(ResponseDone, PotentialDataLoss):
            # PotentialDataLoss is what twisted reports for bodies without a
            # Content-Length, http://twistedmatrix.com/trac/ticket/4840
            self.deferred.callback(b"".join(self.chunks))
        else:
            self.deferred.errback(reason)


def read_body_with_max_size(
    response: IResponse, max_size: Optional[int]
) -> "defer.Deferred[bytes]":
    """
    Read a HTTP response body into memory. Optionally enforcing a maximum size.

    If the maximum size is exceeded, the returned Deferred will resolve to a
    Failure with a BodyExceededMaxSize exception.

    :param response: The HTTP response to read from.
    :param max_size: The maximum body size to allow.

    :return: A Deferred which resolves to the read body.
    """
    d: "defer.Deferred[bytes]" = defer.Deferred()

    # Type safety: twisted guarantees that response.length is either the
    # "opaque" object UNKNOWN_LENGTH, or else an int.
    refuse = (
        max_size is not None
        and response.length != UNKNOWN_LENGTH
        and cast(int, response.length) > max_size
    )
    response.deliverBody(_MaxSizeBodyReader(d, max_size, refuse))
    return d


class SizeLimitingRequest(server.Request):
    """Drops the connection of any request with a body over MAX_REQUEST_SIZE."""

    def handleContentChunk(self, data: bytes) -> None:
        if self.content.tell() + len(data) > MAX_REQUEST_SIZE:
            logger.info(
                "Aborting federation request from %s: body too large",
                self.client,
            )
            assert self.transport is not None
            self.transport.abortConnection()
            return

        return super().handleContentChunk(data)
