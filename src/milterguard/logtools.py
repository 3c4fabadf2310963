# -*- coding: UTF-8 -*-
#   Copyright 2018 Milterguard Project
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
# http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
#
import logging
import logging.config
import os


class logConfig(object):
    """
    Config class to easily distinguish logging configuration for lint and production (from file)
    """

    def __init__(self, lint=False, logConfigFile=None):
        """
        Setup in lint mode or using a config file
        Args:
            lint (bool): enable lint mode which will print on the screen
            logConfigFile (str): load configuration from this file
        """
        if lint and logConfigFile is not None:
            raise ValueError('lint mode does not use a logging config file')

        self._configFile = logConfigFile
        self._lintOutputLevel = logging.ERROR
        self._lint = lint

    def configure(self):
        """
        Configure for lint mode, from file, or with a basic console setup if
        the logging config file does not exist
        """
        if self._lint:
            logConfig._configure4lint(self._lintOutputLevel)
        elif self._configFile is not None and os.path.exists(self._configFile):
            logConfig._configure(self._configFile)
        else:
            logging.basicConfig(level=logging.INFO,
                                format='%(asctime)s %(name)-12s: %(levelname)-8s %(message)s')
            if self._configFile is not None:
                logging.getLogger('milterguard').warning(
                    'logging config %s not found, logging to console' % self._configFile)

    @staticmethod
    def _configure4lint(lintOutputLevel):
        """
        Configure for lint mode (output is on the screen)
        """
        root = logging.getLogger()
        console = logging.StreamHandler()
        console.setLevel(lintOutputLevel)
        # set a format which is simpler for console use
        formatter = logging.Formatter('%(name)-12s: %(levelname)-8s %(message)s')
        console.setFormatter(formatter)
        root.addHandler(console)

    @staticmethod
    def _configure(configFile):
        """
        Configure logging using log configuration file
        """
        logging.config.fileConfig(configFile, disable_existing_loggers=False)
