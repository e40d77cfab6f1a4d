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

import copy
import logging
import os
from configparser import DEFAULTSECT, ConfigParser
from typing import Dict

from fedsim.config.crypto import CryptoConfig
from fedsim.config.general import GeneralConfig
from fedsim.config.http import HTTPConfig

logger = logging.getLogger(__name__)

CONFIG_DEFAULTS = {
    "general": {
        # The name other servers know us by, usually host:port. Leave empty to
        # use the bind address and the port we actually listen on.
        "server.name": os.environ.get("FEDSIM_SERVER_NAME", ""),
        "log.path": "",
        "log.level": "INFO",
        "pidfile.path": os.environ.get("FEDSIM_PID_FILE", "fedsim.pid"),
        # Whether to query our own key server once listening, to check the
        # simulated server works before it is used against a real one.
        "selfcheck": "false",
        # The following can be added to your local config file to enable prometheus
        # support.
        # 'prometheus_port': '8080',  # The port to serve metrics on
        # 'prometheus_addr': '',  # The address to bind to. Empty string means bind to all.
    },
    "crypto": {
        # "ed25519 <version> <unpadded base64 seed>". If empty, a new key is
        # generated each time the server starts.
        "ed25519.signingkey": "",
        # The version part of the id of a generated key (ed25519:<version>)
        "ed25519.key_version": "1",
    },
    "http": {
        "federation.bind_address": "localhost",
        "federation.port": "0",
        # A PEM file holding both the private key and the certificate to serve
        # federation with. Plain HTTP is used if this is empty.
        "federation.certfile": "",
        "federation.verifycerts": "True",
        # Prefix for relative URIs given to the outbound federation client, e.g.
        # https://localhost:8448/_matrix/federation/v1
        "federation.uri_base": "",
    },
}


class FedSimConfig:
    """This is the class in charge of handling the configuration.
    Handling of each individual section is delegated to other classes
    stored in a `config_sections` list.

    To use this class, create a new object and then call one of
    `parse_config_file` or `parse_config_dict` before creating the
    FedSim object that uses it.
    """

    def __init__(self) -> None:
        self.general = GeneralConfig()
        self.crypto = CryptoConfig()
        self.http = HTTPConfig()

        self.config_sections = [
            self.general,
            self.crypto,
            self.http,
        ]

    def _parse_config(self, cfg: ConfigParser) -> bool:
        """
        Run the parse_config method on each of the objects in
        self.config_sections

        :param cfg: the configuration to be parsed

        :return: whether or not cfg has been altered.
        """
        needs_saving = False
        for section in self.config_sections:
            if section.parse_config(cfg):
                needs_saving = True

        return needs_saving

    def parse_from_config_parser(self, cfg: ConfigParser) -> bool:
        """
        Parse the configuration from a ConfigParser object

        :param cfg: the configuration to be parsed

        :return: whether or not cfg has been altered.
        """
        return self._parse_config(cfg)

    def parse_config_file(self, config_file: str) -> None:
        """
        Parse the given config from a filepath, populating missing items and
        sections.

        :param config_file: the file to be parsed
        """
        # If the config file doesn't exist, prepopulate the config object
        # with the defaults, in the right section.
        #
        # Otherwise, we have to put the defaults in the DEFAULT section,
        # to ensure that they don't override anyone's settings which are
        # in their config file in the default section.
        use_defaults = not os.path.exists(config_file)
        if use_defaults:
            logger.info("Config file %s not found, using defaults", config_file)

        cfg = ConfigParser()
        for sect, entries in CONFIG_DEFAULTS.items():
            cfg.add_section(sect)
            for k, v in entries.items():
                cfg.set(DEFAULTSECT if use_defaults else sect, k, v)

        cfg.read(config_file)

        needs_saving = self.parse_from_config_parser(cfg)

        if needs_saving:
            with open(config_file, "w") as fp:
                cfg.write(fp)

    def parse_config_dict(self, config_dict: Dict[str, Dict[str, str]]) -> None:
        """
        Parse the given config from a dictionary, populating missing items and sections

        :param config_dict: the configuration dictionary to be parsed
        """
        # Build a config dictionary from the defaults merged with the given dictionary
        config = copy.deepcopy(CONFIG_DEFAULTS)
        for section, section_dict in config_dict.items():
            if section not in config:
                config[section] = {}
            for option in section_dict.keys():
                config[section][option] = config_dict[section][option]

        # Build a ConfigParser from the merged dictionary
        cfg = ConfigParser()
        for section, section_dict in config.items():
            cfg.add_section(section)
            for option, value in section_dict.items():
                cfg.set(section, option, value)

        self.parse_from_config_parser(cfg)
