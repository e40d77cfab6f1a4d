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
import json

from OpenSSL import crypto
from twisted.internet import defer
from twisted.trial import unittest
from unpaddedbase64 import encode_base64

from fedsim.federation.errors import HttpResponseException
from fedsim.federation.signer import verify_json
from fedsim.http.dispatch import RawResponse
from fedsim.util import time_msec
from tests.utils import fake_server_certificate, make_federation_peers, make_request

S_NAME = "s.test:8448"
T_NAME = "t.test:8448"


class FederationTestCase(unittest.TestCase):
    """Tests federation requests between two in-process servers, S and T"""

    def setUp(self):
        self.agent, (self.s, self.t) = make_federation_peers(S_NAME, T_NAME)
        self.reactor = self.s.reactor

        self.handled = []

        def test_handler(fed_request):
            self.handled.append(fed_request)
            return {"seen_origin": fed_request.origin, "args": fed_request.args}

        self.t.federationHttpServer.register_handler(
            "federation/v1/test", test_handler
        )

    def send_to_t(self, method, path, content=None, auth_content=None, key_id=None):
        """Makes a request to T's federation server, signed by S.

        :param auth_content: What to sign as the body, if different to what's
            sent.
        :param key_id: The key id to claim the request was signed with, if not
            S's own.
        """
        header = self.s.client.build_auth_header(
            method,
            "http://%s%s" % (T_NAME, path),
            auth_content if auth_content is not None else content,
        )
        if key_id is not None:
            header = header.replace(self.s.identity.key_id, key_id)

        _, channel = make_request(
            self.reactor,
            self.t.federationHttpServer.factory,
            method,
            path,
            content if content is not None else b"",
            headers={"Authorization": header},
        )
        return channel

    def cache_s_key_in_t(self):
        self.t.key_cache.store(
            S_NAME, self.s.identity.key_id, self.s.identity.public_key
        )

    def assertUnauthorized(self, channel):
        self.assertEqual(channel.code, 403)
        self.assertEqual(channel.json_body["errcode"], "UNAUTHORIZED")

    def test_signed_request_with_cached_key(self):
        """Tests that a request signed by a server whose key is cached is
        passed to its handler, and that the response is signed
        """
        self.cache_s_key_in_t()
        content = {"origin": S_NAME, "foo": "bar"}

        d = defer.ensureDeferred(
            self.s.client.do_request_json(
                "PUT", "http://%s/_matrix/federation/v1/test/abc" % T_NAME, content
            )
        )
        result = self.successResultOf(d)

        self.assertEqual(result["seen_origin"], S_NAME)
        self.assertEqual(result["args"], ["abc"])
        verify_json(
            result, self.t.identity.public_key, T_NAME, self.t.identity.key_id
        )

        self.assertEqual(len(self.handled), 1)
        self.assertEqual(self.handled[0].content, content)

        # No key fetch was needed.
        self.assertEqual(
            self.agent.requests,
            [(b"PUT", b"http://t.test:8448/_matrix/federation/v1/test/abc")],
        )

    def test_signed_request_fetches_unknown_key(self):
        """Tests that the key of a server we haven't heard from before is
        fetched from it, then cached
        """
        d = defer.ensureDeferred(
            self.s.client.do_request_json(
                "GET", "http://%s/_matrix/federation/v1/test" % T_NAME
            )
        )
        self.assertEqual(self.successResultOf(d)["seen_origin"], S_NAME)

        self.assertEqual(
            self.agent.requests,
            [
                (b"GET", b"http://t.test:8448/_matrix/federation/v1/test"),
                (b"GET", b"http://s.test:8448/_matrix/key/v2/server/ed25519:1"),
            ],
        )
        self.assertIn((S_NAME, self.s.identity.key_id), self.t.key_cache)

        d = defer.ensureDeferred(
            self.s.client.do_request_json(
                "GET", "http://%s/_matrix/federation/v1/test" % T_NAME
            )
        )
        self.successResultOf(d)
        self.assertEqual(len(self.agent.requests), 3)

    def test_unknown_key_id(self):
        """Tests that a request claiming to be signed with a key its origin
        doesn't have is refused
        """
        self.cache_s_key_in_t()

        channel = self.send_to_t(
            "GET", "/_matrix/federation/v1/test", key_id="ed25519:9"
        )

        self.assertUnauthorized(channel)
        self.assertEqual(self.handled, [])
        # T asked S for the key, and S didn't have it.
        self.assertEqual(
            self.agent.requests,
            [(b"GET", b"http://s.test:8448/_matrix/key/v2/server/ed25519:9")],
        )
        self.assertNotIn((S_NAME, "ed25519:9"), self.t.key_cache)

    def test_key_fetch_failure(self):
        """Tests that a request from a server whose key can't be fetched is
        refused
        """
        del self.agent.sites[S_NAME]

        channel = self.send_to_t("GET", "/_matrix/federation/v1/test")

        self.assertUnauthorized(channel)
        self.assertEqual(self.handled, [])

    def test_origin_mismatch(self):
        """Tests that a request whose body claims a different origin is refused
        without fetching any keys
        """
        content = {"origin": "evil.test"}
        channel = self.send_to_t("PUT", "/_matrix/federation/v1/test", content)

        self.assertUnauthorized(channel)
        self.assertEqual(self.handled, [])
        self.assertEqual(self.agent.requests, [])

    def test_body_without_origin(self):
        self.cache_s_key_in_t()
        channel = self.send_to_t("PUT", "/_matrix/federation/v1/test", {"a": 1})
        self.assertUnauthorized(channel)

    def test_body_not_json(self):
        self.cache_s_key_in_t()
        channel = self.send_to_t(
            "PUT",
            "/_matrix/federation/v1/test",
            b"{not json",
            auth_content={"origin": S_NAME},
        )

        self.assertEqual(channel.code, 400)
        self.assertEqual(channel.json_body["errcode"], "M_NOT_JSON")

    def test_tampered_content(self):
        """Tests that a body other than the one which was signed is refused"""
        self.cache_s_key_in_t()

        channel = self.send_to_t(
            "PUT",
            "/_matrix/federation/v1/test",
            {"origin": S_NAME, "amount": 1000},
            auth_content={"origin": S_NAME, "amount": 1},
        )

        self.assertUnauthorized(channel)
        self.assertEqual(self.handled, [])

    def test_wrong_method(self):
        """Tests that a signature made for one method isn't accepted for
        another
        """
        self.cache_s_key_in_t()
        header = self.s.client.build_auth_header(
            "GET", "http://%s/_matrix/federation/v1/test" % T_NAME
        )

        _, channel = make_request(
            self.reactor,
            self.t.federationHttpServer.factory,
            "DELETE",
            "/_matrix/federation/v1/test",
            headers={"Authorization": header},
        )

        self.assertUnauthorized(channel)

    def test_missing_authorization(self):
        _, channel = make_request(
            self.reactor,
            self.t.federationHttpServer.factory,
            "GET",
            "/_matrix/federation/v1/test",
        )

        self.assertUnauthorized(channel)
        self.assertIn("X-Matrix", channel.json_body["error"])

    def test_missing_sig(self):
        _, channel = make_request(
            self.reactor,
            self.t.federationHttpServer.factory,
            "GET",
            "/_matrix/federation/v1/test",
            headers={
                "Authorization": 'X-Matrix origin="s.test:8448",key="ed25519:1"'
            },
        )

        self.assertUnauthorized(channel)
        self.assertIn("'sig'", channel.json_body["error"])

    def test_unknown_path(self):
        """Tests that an authenticated request to a path with no handler gets
        an empty 404
        """
        self.cache_s_key_in_t()

        channel = self.send_to_t("GET", "/_matrix/federation/v2/nothing")

        self.assertEqual(channel.code, 404)
        self.assertEqual(channel.body, b"")

    def test_unknown_path_needs_authentication(self):
        _, channel = make_request(
            self.reactor,
            self.t.federationHttpServer.factory,
            "GET",
            "/_matrix/federation/v2/nothing",
        )
        self.assertUnauthorized(channel)

    def test_raw_response(self):
        """Tests that handlers can send back responses which aren't signed"""
        self.cache_s_key_in_t()

        async def raw_handler(fed_request):
            return RawResponse(202, b"accepted", {"Content-Type": "text/plain"})

        self.t.federationHttpServer.register_handler("federation/v1/raw", raw_handler)

        channel = self.send_to_t("POST", "/_matrix/federation/v1/raw")

        self.assertEqual(channel.code, 202)
        self.assertEqual(channel.body, b"accepted")
        self.assertEqual(channel.headers.getRawHeaders("Content-Type"), ["text/plain"])

    def test_handler_error(self):
        self.cache_s_key_in_t()

        def broken_handler(fed_request):
            raise RuntimeError("oops")

        self.t.federationHttpServer.register_handler(
            "federation/v1/broken", broken_handler
        )

        channel = self.send_to_t("GET", "/_matrix/federation/v1/broken")

        self.assertEqual(channel.code, 500)
        self.assertEqual(channel.json_body["errcode"], "M_UNKNOWN")

    def test_client_sees_error_response(self):
        """Tests that a refused request fails on the client side"""
        d = defer.ensureDeferred(
            self.s.client.do_request_json(
                "PUT",
                "http://%s/_matrix/federation/v1/test" % T_NAME,
                {"origin": "evil.test"},
            )
        )

        f = self.failureResultOf(d, HttpResponseException)
        self.assertEqual(f.value.code, 403)
        self.assertEqual(json.loads(f.value.response)["errcode"], "UNAUTHORIZED")


class KeyServerTestCase(unittest.TestCase):
    """Tests serving our public key to other servers"""

    def setUp(self):
        self.agent, (self.s,) = make_federation_peers(S_NAME)

    def get_keys(self, tls=True):
        _, channel = make_request(
            self.s.reactor,
            self.s.federationHttpServer.factory,
            "GET",
            "/_matrix/key/v2/server/ed25519:1",
            tls=tls,
        )
        self.assertEqual(channel.code, 200)
        return channel.json_body

    def test_key_response(self):
        """Tests that the key response is for us, and is signed with the key
        it contains
        """
        before = time_msec()
        body = self.get_keys()
        identity = self.s.identity

        self.assertEqual(body["server_name"], S_NAME)
        self.assertEqual(
            body["verify_keys"],
            {identity.key_id: {"key": encode_base64(identity.public_key)}},
        )
        self.assertEqual(body["old_verify_keys"], {})
        self.assertGreaterEqual(
            body["valid_until_ts"], before + 24 * 60 * 60 * 1000
        )
        verify_json(body, identity.public_key, S_NAME, identity.key_id)

    def test_tls_fingerprints(self):
        """Tests that the certificate the key server is reached over is
        fingerprinted
        """
        der = crypto.dump_certificate(crypto.FILETYPE_ASN1, fake_server_certificate())
        expected = encode_base64(hashlib.sha256(der).digest())

        body = self.get_keys()

        self.assertEqual(body["tls_fingerprints"], [{"sha256": expected}])

    def test_no_tls(self):
        body = self.get_keys(tls=False)
        self.assertEqual(body["tls_fingerprints"], [])

    def test_any_key_id(self):
        """Tests that our key is served whatever key id is asked for"""
        _, channel = make_request(
            self.s.reactor,
            self.s.federationHttpServer.factory,
            "GET",
            "/_matrix/key/v2/server",
        )

        self.assertEqual(channel.code, 200)
        self.assertIn(self.s.identity.key_id, channel.json_body["verify_keys"])
