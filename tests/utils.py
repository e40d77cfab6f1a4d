import json
import logging
import os
from io import BytesIO
from typing import Dict, List, Optional, Tuple

import attr
import twisted.logger
from OpenSSL import crypto
from twisted.internet import address, defer
from twisted.internet.error import ConnectionRefusedError
from twisted.python.failure import Failure
from twisted.test.proto_helpers import MemoryReactorClock
from twisted.web.client import URI, ResponseDone
from twisted.web.http import unquote
from twisted.web.http_headers import Headers
from twisted.web.server import Request, Site

from fedsim.config import FedSimConfig
from fedsim.fedsim import FedSim

# Expires on Jan 11 2030 at 17:53:40 GMT
FAKE_SERVER_CERT_PEM = """
-----BEGIN CERTIFICATE-----
MIIDlzCCAn+gAwIBAgIUC8tnJVZ8Cawh5tqr7PCAOfvyGTYwDQYJKoZIhvcNAQEL
BQAwWzELMAkGA1UEBhMCQVUxEzARBgNVBAgMClNvbWUtU3RhdGUxITAfBgNVBAoM
GEludGVybmV0IFdpZGdpdHMgUHR5IEx0ZDEUMBIGA1UEAwwLZmFrZS5zZXJ2ZXIw
HhcNMjAwMTE0MTc1MzQwWhcNMzAwMTExMTc1MzQwWjBbMQswCQYDVQQGEwJBVTET
MBEGA1UECAwKU29tZS1TdGF0ZTEhMB8GA1UECgwYSW50ZXJuZXQgV2lkZ2l0cyBQ
dHkgTHRkMRQwEgYDVQQDDAtmYWtlLnNlcnZlcjCCASIwDQYJKoZIhvcNAQEBBQAD
ggEPADCCAQoCggEBANNzY7YHBLm4uj52ojQc/dfQCoR+63IgjxZ6QdnThhIlOYgE
3y0Ks49bt3GKmAweOFRRKfDhJRKCYfqZTYudMcdsQg696s2HhiTY0SpqO0soXwW4
6kEIxnTy2TqkPjWlsWgGTtbVnKc5pnLs7MaQwLIQfxirqD2znn+9r68WMOJRlzkv
VmrXDXjxKPANJJ9b0PiGrL2SF4QcF3zHk8Tjf24OGRX4JTNwiGraU/VN9rrqSHug
CLWcfZ1mvcav3scvtGfgm4kxcw8K6heiQAc3QAMWIrdWhiunaWpQYgw7euS8lZ/O
C7HZ7YbdoldknWdK8o7HJZmxUP9yW9Pqa3n8p9UCAwEAAaNTMFEwHQYDVR0OBBYE
FHwfTq0Mdk9YKqjyfdYm4v9zRP8nMB8GA1UdIwQYMBaAFHwfTq0Mdk9YKqjyfdYm
4v9zRP8nMA8GA1UdEwEB/wQFMAMBAf8wDQYJKoZIhvcNAQELBQADggEBAEPVM5/+
Sj9P/CvNG7F2PxlDQC1/+aVl6ARAz/bZmm7yJnWEleBSwwFLerEQU6KFrgjA243L
qgY6Qf2EYUn1O9jroDg/IumlcQU1H4DXZ03YLKS2bXFGj630Piao547/l4/PaKOP
wSvwDcJlBatKfwjMVl3Al/EcAgUJL8eVosnqHDSINdBuFEc8Kw4LnDSFoTEIx19i
c+DKmtnJNI68wNydLJ3lhSaj4pmsX4PsRqsRzw+jgkPXIG1oGlUDMO3k7UwxfYKR
XkU5mFYkohPTgxv5oYGq2FCOPixkbov7geCEvEUs8m8c8MAm4ErBUzemOAj8KVhE
tWVEpHfT+G7AjA8=
-----END CERTIFICATE-----
"""


def fake_server_certificate() -> crypto.X509:
    return crypto.load_certificate(crypto.FILETYPE_PEM, FAKE_SERVER_CERT_PEM)


def make_fedsim(
    test_config: Optional[dict] = None, reactor: Optional[MemoryReactorClock] = None
) -> FedSim:
    """Create a new federation peer

    Args:
        test_config: Configuration variables for overriding the default
            config
        reactor: The reactor to use. A new MemoryReactorClock if not given.
    """
    if test_config is None:
        test_config = {}

    general_config = test_config.setdefault("general", {})
    general_config.setdefault("server.name", "fake.server:8448")
    # Don't leave pidfiles lying around.
    general_config.setdefault("pidfile.path", "")

    if reactor is None:
        reactor = MemoryReactorClock()

    fedsim_config = FedSimConfig()
    fedsim_config.parse_config_dict(test_config)

    return FedSim(
        reactor=reactor,
        fedsim_config=fedsim_config,
        use_tls_for_federation=False,
    )


class FakeTLSConnection:
    """Stands in for the pyOpenSSL connection under a TLS transport."""

    def get_certificate(self) -> crypto.X509:
        return fake_server_certificate()


@attr.s
class FakeChannel:
    """
    A fake Twisted Web Channel (the part that interfaces with the
    wire). Mostly copied from Synapse's tests framework.
    """

    site = attr.ib(type=Site)
    _reactor = attr.ib()
    # Whether to pretend the connection is over TLS
    tls = attr.ib(type=bool, default=True)
    result = attr.ib(default=attr.Factory(dict))

    @property
    def json_body(self):
        if not self.result:
            raise Exception("No result yet.")
        return json.loads(self.result["body"].decode("utf8"))

    @property
    def body(self) -> bytes:
        if not self.result:
            raise Exception("No result yet.")
        return self.result.get("body", b"")

    @property
    def code(self):
        if not self.result:
            raise Exception("No result yet.")
        return int(self.result["code"])

    @property
    def headers(self):
        if not self.result:
            raise Exception("No result yet.")
        if isinstance(self.result["headers"], Headers):
            return self.result["headers"]
        h = Headers()
        for i in self.result["headers"]:
            h.addRawHeader(*i)
        return h

    def writeHeaders(self, version, code, reason, headers):
        self.result["version"] = version
        self.result["code"] = code
        self.result["reason"] = reason
        self.result["headers"] = headers

    def write(self, content):
        assert isinstance(content, bytes), "Should be bytes! " + repr(content)

        if "body" not in self.result:
            self.result["body"] = b""

        self.result["body"] += content

    def requestDone(self, _self):
        self.result["done"] = True

    def getPeer(self):
        return address.IPv4Address("TCP", "127.0.0.1", 3423)

    def getHost(self):
        return None

    def isSecure(self):
        return self.tls

    def loseConnection(self):
        pass

    def abortConnection(self):
        pass

    @property
    def transport(self):
        return self

    def getHandle(self):
        if self.tls:
            return FakeTLSConnection()
        return None


def make_request(
    reactor,
    site,
    method,
    path,
    content=b"",
    headers=None,
    tls=True,
):
    """
    Make a web request using the given method and path, feed it the
    content, and return the Request and the Channel underneath.

    Args:
        reactor (IReactor): The Twisted reactor to use when performing the request.
        site (Site): The site to send the request to.
        method (bytes or unicode): The HTTP request method ("verb").
        path (bytes or unicode): The HTTP path, suitably URL encoded (e.g.
            escaped UTF-8 & spaces and such).
        content (bytes or dict): The body of the request. JSON-encoded, if
            a dict.
        headers (dict or Headers): Headers to add to the request.
        tls (bool): Whether the request should look like it came over TLS.

    Returns:
        Tuple[Request, FakeChannel]
    """
    if not isinstance(method, bytes):
        method = method.encode("ascii")

    if not isinstance(path, bytes):
        path = path.encode("ascii")

    if not path.startswith(b"/"):
        path = b"/" + path

    if isinstance(content, dict):
        content = json.dumps(content)
    if isinstance(content, str):
        content = content.encode("utf8")

    channel = FakeChannel(site, reactor, tls=tls)

    req = Request(channel)
    req.content = BytesIO(content)
    req.postpath = list(map(unquote, path[1:].split(b"/")))

    if isinstance(headers, Headers):
        for name, values in headers.getAllRawHeaders():
            for value in values:
                req.requestHeaders.addRawHeader(name, value)
    elif headers:
        for name, value in headers.items():
            req.requestHeaders.addRawHeader(name, value)

    if content and not req.requestHeaders.hasHeader(b"Content-Type"):
        req.requestHeaders.addRawHeader(b"Content-Type", b"application/json")

    req.requestReceived(method, path, b"1.1")

    return req, channel


@attr.s
class FakeResponse:
    """A twisted.web IResponse whose whole body is available at once."""

    code = attr.ib(type=int)
    body = attr.ib(type=bytes, default=b"")
    headers = attr.ib(factory=Headers)
    version = (b"HTTP", 1, 1)
    phrase = b"OK"

    @property
    def length(self) -> int:
        return len(self.body)

    @classmethod
    def json(cls, code: int, content: dict) -> "FakeResponse":
        return cls(code, json.dumps(content).encode("utf8"))

    def deliverBody(self, protocol):
        protocol.dataReceived(self.body)
        protocol.connectionLost(Failure(ResponseDone()))


class FederationTestAgent:
    """
    A twisted.web IAgent which, rather than opening connections, passes each
    request straight to the Site of the in-process server it is addressed to.
    """

    def __init__(self, reactor, tls: bool = True):
        self.reactor = reactor
        self.tls = tls
        self.sites: Dict[str, Site] = {}
        # (method, uri) of every request made through this agent
        self.requests: List[Tuple[bytes, bytes]] = []

    def add_server(self, fedsim: FedSim) -> None:
        assert fedsim.identity is not None
        self.sites[fedsim.identity.name] = fedsim.federationHttpServer.factory
        fedsim.client.agent = self

    def request(self, method, uri, headers=None, bodyProducer=None):
        self.requests.append((method, uri))

        parsed = URI.fromBytes(uri)
        site = self.sites.get(parsed.netloc.decode("ascii"))
        if site is None:
            return defer.fail(ConnectionRefusedError(parsed.netloc))

        content = b""
        if bodyProducer is not None:
            # FileBodyProducer over a BytesIO
            content = bodyProducer._inputFile.read()

        _, channel = make_request(
            self.reactor,
            site,
            method,
            parsed.originForm,
            content,
            headers=headers,
            tls=self.tls,
        )
        return defer.succeed(
            FakeResponse(channel.code, channel.body, channel.headers)
        )


def make_federation_peers(
    *names: str, reactor: Optional[MemoryReactorClock] = None, tls: bool = True
) -> Tuple[FederationTestAgent, List[FedSim]]:
    """Creates federation peers with the given names, all able to talk to each
    other through the same FederationTestAgent.
    """
    if reactor is None:
        reactor = MemoryReactorClock()
    agent = FederationTestAgent(reactor, tls=tls)

    peers = []
    for name in names:
        peer = make_fedsim({"general": {"server.name": name}}, reactor=reactor)
        agent.add_server(peer)
        peers.append(peer)

    return agent, peers


class ToTwistedHandler(logging.Handler):
    """logging handler which sends the logs to the twisted log"""

    tx_log = twisted.logger.Logger()

    def emit(self, record):
        log_entry = self.format(record)
        log_level = record.levelname.lower().replace("warning", "warn")
        self.tx_log.emit(
            twisted.logger.LogLevel.levelWithName(log_level), "{entry}", entry=log_entry
        )


def setup_logging():
    """Configure the python logging appropriately for the tests.

    (Logs will end up in _trial_temp.)
    """
    root_logger = logging.getLogger()

    log_format = "%(asctime)s - %(name)s - %(lineno)d - %(levelname)s" " - %(message)s"

    handler = ToTwistedHandler()
    formatter = logging.Formatter(log_format)
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    log_level = os.environ.get("FEDSIM_TEST_LOG_LEVEL", "ERROR")
    root_logger.setLevel(log_level)


setup_logging()
