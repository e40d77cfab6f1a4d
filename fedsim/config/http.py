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

from configparser import ConfigParser

from fedsim.config._base import BaseConfig


class HTTPConfig(BaseConfig):
    def parse_config(self, cfg: "ConfigParser") -> bool:
        """
        Parse the http section of the config

        :param cfg: the configuration to be parsed
        """
        self.federation_bind_address = cfg.get("http", "federation.bind_address")
        # 0 picks an unused port
        self.federation_port = cfg.getint("http", "federation.port")

        self.cert_file = cfg.get("http", "federation.certfile")

        self.verify_federation_certs = cfg.getboolean("http", "federation.verifycerts")

        self.federation_uri_base = cfg.get("http", "federation.uri_base").rstrip("/")

        return False
