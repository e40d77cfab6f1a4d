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
from typing import Optional

from fedsim.config._base import BaseConfig, parse_cfg_bool
from fedsim.util.stringutils import is_valid_matrix_server_name


class GeneralConfig(BaseConfig):
    def parse_config(self, cfg: "ConfigParser") -> bool:
        """
        Parse the 'general' section of the config

        :param cfg: the configuration to be parsed
        """
        # An empty server name means "whatever address we end up listening on",
        # which is only known once the federation port is bound.
        self.server_name: Optional[str] = cfg.get("general", "server.name") or None
        if self.server_name is not None and not is_valid_matrix_server_name(
            self.server_name
        ):
            raise ValueError(
                "general.server.name '%s' is not a valid server name"
                % (self.server_name,)
            )

        self.log_level = cfg.get("general", "log.level")
        self.log_path = cfg.get("general", "log.path")

        self.pidfile = cfg.get("general", "pidfile.path")

        self.selfcheck = parse_cfg_bool(cfg.get("general", "selfcheck"))

        self.prometheus_port = cfg.getint("general", "prometheus_port", fallback=None)
        self.prometheus_addr = cfg.get("general", "prometheus_addr", fallback=None)
        self.prometheus_enabled = (
            self.prometheus_port is not None and self.prometheus_addr is not None
        )

        return False
