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

from typing import Optional

# The errcode sent back in the body of every 403 caused by a failure to
# authenticate an incoming federation request.
UNAUTHORIZED_ERRCODE = "UNAUTHORIZED"


class FederationAuthError(Exception):
    """
    Base class for failures to authenticate a federation request. These are
    turned into 403 responses by the federation servlet and never propagate
    any further.
    """

    def __init__(self, msg: str):
        super().__init__(msg)
        self.msg = msg


class MissingAuthParam(FederationAuthError):
    """
    Raised when the Authorization header is absent, is not of the X-Matrix
    scheme, or lacks one of the origin, key or sig parameters.
    """

    pass


class OriginMismatch(FederationAuthError):
    """
    Raised when the 'origin' of a request body doesn't match the origin given
    in the Authorization header.
    """

    pass


class KeyFetchFailed(FederationAuthError):
    """
    Raised when the public key of a remote server could not be retrieved.
    """

    pass


class ServerNameMismatch(KeyFetchFailed):
    """
    Raised when a key server response is for a different server than the one
    we asked.
    """

    pass


class KeyNotFound(KeyFetchFailed):
    """
    Raised when a key server response doesn't include the requested key id.
    """

    pass


class SignatureInvalid(FederationAuthError):
    """
    Raised when a signature is missing from a signed object, or doesn't match
    its content.
    """

    pass


class DispatchNotFound(Exception):
    """
    Raised when no handler is registered for the path of a request.
    """

    pass


class HttpResponseException(Exception):
    """
    Raised when a remote server answers an outbound request with a non-2xx
    status code.
    """

    def __init__(self, code: int, msg: str, response: Optional[bytes] = None):
        super().__init__("%d: %s" % (code, msg))
        self.code = code
        self.msg = msg
        self.response = response
