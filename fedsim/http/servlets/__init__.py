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

import json
import logging
from typing import Any

from prometheus_client import Counter
from twisted.web.resource import Resource
from twisted.web.server import Request

from fedsim.types import JsonDict

logger = logging.getLogger(__name__)


request_counter = Counter(
    "fedsim_http_received_requests",
    "Received requests",
    labelnames=("servlet", "method"),
)


class FedSimResource(Resource):
    """A subclass of resource that tracks request metrics"""

    def __init__(self) -> None:
        self._name = self.__class__.__name__
        super().__init__()

    def render(self, request: Request) -> Any:
        request_counter.labels(self._name, request.method).inc()
        return super().render(request)


class MatrixRestError(Exception):
    """
    An error which is sent back to the client as a JSON error body with the
    given HTTP status code.
    """

    def __init__(self, httpStatus: int, errcode: str, error: str):
        super(Exception, self).__init__(error)
        self.httpStatus = httpStatus
        self.errcode = errcode
        self.error = error


def dict_to_json_bytes(content: JsonDict) -> bytes:
    """
    Converts a dict into JSON and encodes it to bytes.

    :return: The JSON bytes.
    """
    return json.dumps(content).encode("UTF-8")
