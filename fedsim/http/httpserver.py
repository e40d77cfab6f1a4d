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
from typing import TYPE_CHECKING, Optional, Sequence, Union

import twisted.internet.ssl
from twisted.internet.interfaces import IListeningPort
from twisted.web.resource import Resource
from twisted.web.server import Site

from fedsim.federation.identity import Identity
from fedsim.federation.keycache import KeyCache
from fedsim.http.dispatch import Handler, HandlerRegistry
from fedsim.http.httpcommon import SizeLimitingRequest
from fedsim.http.servlets.federationservlet import FederationServlet
from fedsim.http.servlets.keyservlet import KeyServerHandler

if TYPE_CHECKING:
    from fedsim.fedsim import FedSim
    from fedsim.http.httpclient import FederationHttpClient

logger = logging.getLogger(__name__)


class FederationHttpServer:
    def __init__(self, fedsim: "FedSim") -> None:
        self.fedsim = fedsim

        self.registry = HandlerRegistry()
        self.servlet = FederationServlet(fedsim, self.registry)
        self.registry.register(
            ("key", "v2", "server"),
            KeyServerHandler(self.servlet, fedsim.sslComponents),
        )

        root = Resource()
        root.putChild(b"_matrix", self.servlet)

        self.factory = Site(root, SizeLimitingRequest)
        self.factory.displayTracebacks = False

        self.port: Optional[IListeningPort] = None

    def configure(
        self,
        identity: Optional[Identity] = None,
        key_cache: Optional[KeyCache] = None,
        client: Optional["FederationHttpClient"] = None,
    ) -> None:
        self.servlet.configure(identity=identity, key_cache=key_cache, client=client)

    def register_handler(
        self, path: Union[str, Sequence[str]], handler: Handler
    ) -> None:
        """
        Adds a handler for federation requests to the given path, relative to
        /_matrix/.
        """
        self.registry.register(path, handler)

    def setup(self) -> IListeningPort:
        httpPort = self.fedsim.config.http.federation_port
        interface = self.fedsim.config.http.federation_bind_address

        cert = self.fedsim.sslComponents.myPrivateCertificate
        if cert is not None:
            certOptions = twisted.internet.ssl.CertificateOptions(
                privateKey=cert.privateKey.original,
                certificate=cert.original,
            )

            logger.info("Loaded server private key and certificate!")
            self.port = self.fedsim.reactor.listenSSL(
                httpPort,
                self.factory,
                certOptions,
                backlog=50,  # taken from PosixReactorBase.listenTCP
                interface=interface,
            )
        else:
            self.port = self.fedsim.reactor.listenTCP(
                httpPort,
                self.factory,
                backlog=50,  # taken from PosixReactorBase.listenTCP
                interface=interface,
            )

        logger.info(
            "Started federation server on %s:%d",
            interface,
            self.port.getHost().port,
        )
        return self.port
