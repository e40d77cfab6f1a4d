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
from typing import Awaitable, Callable, Dict, List

from prometheus_client import Counter
from twisted.internet import defer

from fedsim.federation.errors import KeyFetchFailed

logger = logging.getLogger(__name__)

key_fetch_counter = Counter(
    "fedsim_key_fetches",
    "Fetches of remote server keys",
    labelnames=("outcome",),
)

# Fetches the raw public key with the given id from the given server.
KeyFetcher = Callable[[str, str], Awaitable[bytes]]


class KeyCache:
    """
    Public keys of remote servers, keyed on server name and key id.

    Entries are only ever added: a key, once fetched, is kept for the lifetime
    of the process. Lookups for a key which is already being fetched wait for
    that fetch rather than starting another one.
    """

    def __init__(self) -> None:
        self._keys: Dict[str, bytes] = {}
        # Deferreds waiting on a fetch which is in progress
        self._pending: Dict[str, List["defer.Deferred[bytes]"]] = {}

    @staticmethod
    def _cache_key(server_name: str, key_id: str) -> str:
        return "%s:%s" % (server_name, key_id)

    def get(
        self, server_name: str, key_id: str, fetch: KeyFetcher
    ) -> "defer.Deferred[bytes]":
        """
        Gets a server's public key, fetching it if it isn't cached yet.

        :param server_name: The name of the server owning the key.
        :param key_id: The id of the key.
        :param fetch: Called to retrieve the key on a miss. Only called once
            for any number of concurrent lookups of the same key.

        :return: A deferred resolving to the raw public key, or failing with
            KeyFetchFailed. A failed fetch isn't cached, so a later call will
            try again.
        """
        ck = self._cache_key(server_name, key_id)
        if ck in self._keys:
            return defer.succeed(self._keys[ck])

        d: "defer.Deferred[bytes]" = defer.Deferred()
        waiters = self._pending.get(ck)
        if waiters is not None:
            logger.debug("Waiting on in-flight fetch of %s", ck)
            waiters.append(d)
            return d

        self._pending[ck] = [d]
        defer.ensureDeferred(self._fetch(ck, server_name, key_id, fetch))
        return d

    async def _fetch(
        self, ck: str, server_name: str, key_id: str, fetch: KeyFetcher
    ) -> None:
        logger.info("Fetching key %s from %s", key_id, server_name)
        try:
            key = await fetch(server_name, key_id)
        except Exception as e:
            key_fetch_counter.labels("failure").inc()
            if isinstance(e, KeyFetchFailed):
                err = e
            else:
                err = KeyFetchFailed(
                    "Failed to fetch key %s from %s: %s" % (key_id, server_name, e)
                )
                err.__cause__ = e
            logger.warning("%s", err)
            for d in self._pending.pop(ck):
                d.errback(err)
            return

        key_fetch_counter.labels("success").inc()
        self._keys[ck] = key
        for d in self._pending.pop(ck):
            d.callback(key)

    def store(self, server_name: str, key_id: str, key: bytes) -> None:
        """
        Adds a key to the cache without fetching it.

        :param server_name: The name of the server owning the key.
        :param key_id: The id of the key.
        :param key: The raw public key.
        """
        self._keys[self._cache_key(server_name, key_id)] = key

    def __contains__(self, server_key: object) -> bool:
        if not isinstance(server_key, tuple) or len(server_key) != 2:
            return False
        return self._cache_key(*server_key) in self._keys

    def __len__(self) -> int:
        return len(self._keys)
