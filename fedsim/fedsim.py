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
import logging.handlers
import os
from typing import Optional

import prometheus_client
import twisted.internet.reactor
from twisted.internet import defer
from twisted.internet.interfaces import (
    IReactorCore,
    IReactorPluggableNameResolver,
    IReactorSSL,
    IReactorTCP,
    IReactorTime,
)
from twisted.python import log
from zope.interface import Interface

from fedsim.config import FedSimConfig
from fedsim.federation.identity import Identity
from fedsim.federation.keycache import KeyCache
from fedsim.http.httpclient import FederationHttpClient
from fedsim.http.httpcommon import SslComponents
from fedsim.http.httpserver import FederationHttpServer
from fedsim.selfcheck import check_local_key_server

logger = logging.getLogger(__name__)


class FedSimReactor(
    IReactorCore,
    IReactorTCP,
    IReactorSSL,
    IReactorTime,
    IReactorPluggableNameResolver,
    Interface,
):
    pass


class FedSim:
    """A federation peer: an outbound client which signs its requests and an
    inbound server which checks the signatures on requests made to it, sharing
    one identity and one cache of remote servers' keys.
    """

    def __init__(
        self,
        fedsim_config: FedSimConfig,
        reactor: FedSimReactor = twisted.internet.reactor,  # type: ignore[assignment]
        use_tls_for_federation: bool = True,
    ):
        self.config = fedsim_config

        self.reactor = reactor
        self.use_tls_for_federation = use_tls_for_federation

        logger.info("Starting federation peer")

        self.key_cache = KeyCache()
        self.sslComponents = SslComponents(self)

        self.client = FederationHttpClient(self)
        self.federationHttpServer = FederationHttpServer(self)

        self.identity: Optional[Identity] = None
        if self.config.general.server_name is not None:
            self.configure(self.config.general.server_name)

    def configure(self, server_name: str) -> None:
        """
        Creates our identity and hands it, along with the shared key cache, to
        both the client and the server.

        :param server_name: The name to sign as.
        """
        self.identity = Identity.from_signing_key(
            server_name, self.config.crypto.signing_key
        )
        logger.info(
            "Federating as %s with key %s", self.identity.name, self.identity.key_id
        )

        self.client.configure(identity=self.identity, key_cache=self.key_cache)
        self.federationHttpServer.configure(
            identity=self.identity, key_cache=self.key_cache, client=self.client
        )

    def run(self) -> None:
        port = self.federationHttpServer.setup()
        if self.identity is None:
            # We're known by whichever address we ended up listening on.
            host = port.getHost()
            self.configure("%s:%d" % (host.host, host.port))

        self.maybe_start_prometheus_server()

        if self.config.general.selfcheck:
            self.reactor.callWhenRunning(self.run_selfcheck)

        if self.config.general.pidfile:
            with open(self.config.general.pidfile, "w") as pidfile:
                pidfile.write(str(os.getpid()) + "\n")

        self.reactor.run()

    def run_selfcheck(self) -> "defer.Deferred[None]":
        assert self.identity is not None
        d = defer.ensureDeferred(
            check_local_key_server(
                self.client, self.identity.name, self.identity.key_id
            )
        )

        def _failed(f):
            logger.error(
                "Local federation server failed its self-check: %s", f.getErrorMessage()
            )
            return f

        d.addErrback(_failed)
        return d

    def maybe_start_prometheus_server(self) -> None:
        if self.config.general.prometheus_enabled:
            assert self.config.general.prometheus_addr is not None
            assert self.config.general.prometheus_port is not None
            prometheus_client.start_http_server(
                port=self.config.general.prometheus_port,
                addr=self.config.general.prometheus_addr,
            )


def get_config_file_path() -> str:
    return os.environ.get("FEDSIM_CONF", "fedsim.conf")


def setup_logging(config: FedSimConfig) -> None:
    """
    Setup logging using the options specified in the config

    :param config: the configuration to use
    """
    log_path = config.general.log_path
    log_level = config.general.log_level

    log_format = "%(asctime)s - %(name)s - %(lineno)d - %(levelname)s" " - %(message)s"
    formatter = logging.Formatter(log_format)

    handler: logging.Handler
    if log_path != "":
        handler = logging.handlers.TimedRotatingFileHandler(
            log_path, when="midnight", backupCount=365
        )
    else:
        handler = logging.StreamHandler()

    handler.setFormatter(formatter)
    rootLogger = logging.getLogger("")
    rootLogger.setLevel(log_level)
    rootLogger.addHandler(handler)

    observer = log.PythonLoggingObserver()
    observer.start()


def main() -> None:
    fedsim_config = FedSimConfig()
    fedsim_config.parse_config_file(get_config_file_path())
    setup_logging(fedsim_config)

    fs = FedSim(fedsim_config)
    fs.run()


if __name__ == "__main__":
    main()
