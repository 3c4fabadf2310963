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
#
import configparser
import inspect
import logging
import re
import sys
import threading
import time
import traceback

from milterguard import MILTERGUARD_VERSION
from milterguard.shared import propagate_defaults
from milterguard.server import MilterServer

# short names for the builtin plugins
DEFAULT_ALIASES = {
    'attachment': 'milterguard.plugins.attachment.ExtensionFilter',
    'bogofilter': 'milterguard.plugins.bogofilter.BogofilterPlugin',
}


class MainController(object):

    """main class to startup and control the app"""

    def __init__(self, config):
        self.requiredvars = {
            # main section
            'identifier': {
                'section': 'main',
                'description': """identifier can be any string that helps you identifying your config file\nthis helps making sure the correct config is loaded""",
                'default': 'dist',
            },

            'daemonize': {
                'section': 'main',
                'description': "run as a daemon? (fork)",
                'default': "1",
            },

            'user': {
                'section': 'main',
                'description': "run as user",
                'default': "nobody",
            },

            'group': {
                'section': 'main',
                'description': "run as group",
                'default': "nobody",
            },

            'plugins': {
                'section': 'main',
                'description': "comma separated list of plugins, run in this order. builtin: attachment, bogofilter",
                'default': "attachment",
            },

            'protocol': {
                'section': 'main',
                'description': "socket type the MTA connects to: unix or tcp",
                'default': "unix",
                'validator': lambda value: value in ('unix', 'tcp'),
            },

            'address': {
                'section': 'main',
                'description': "path of the unix socket or host:port for tcp",
                'default': "/var/spool/postfix/milters/ext.sock",
            },
        }
        self.config = config
        self.servers = []
        self.plugins = []
        self.stayalive = True
        self.logger = self._logger()

    def _logger(self):
        myclass = self.__class__.__name__
        loggername = "milterguard.%s" % myclass
        return logging.getLogger(loggername)

    def propagate_core_defaults(self):
        """check for missing core config options and try to fill them with defaults
        must be called before we can do plugin loading stuff
        """
        propagate_defaults(self.requiredvars, self.config, 'main')

    def propagate_plugin_defaults(self):
        """propagate defaults from loaded plugins"""
        for plug in self.plugins:
            requiredvars = getattr(plug, 'requiredvars', None)
            if type(requiredvars) == dict:
                propagate_defaults(requiredvars, self.config, plug.section)

    def checkConfig(self):
        """Check if all required options are in the config file"""
        allOK = True
        for config, infodic in self.requiredvars.items():
            section = infodic['section']
            try:
                var = self.config.get(section, config)

                if 'validator' in infodic:
                    if not infodic["validator"](var):
                        print(
                            "Validation failed for [%s] :: %s" % (section, config))
                        allOK = False

            except configparser.NoSectionError:
                print(
                    "Missing configuration section [%s] :: %s" % (section, config))
                allOK = False
            except configparser.NoOptionError:
                print(
                    "Missing configuration value [%s] :: %s" % (section, config))
                allOK = False
        return allOK

    def get_component_by_alias(self, pluginalias):
        """Returns the full plugin component from an alias. if this alias is not configured, return the original string"""
        if self.config.has_section('PluginAlias') and self.config.has_option('PluginAlias', pluginalias):
            return self.config.get('PluginAlias', pluginalias)
        return DEFAULT_ALIASES.get(pluginalias, pluginalias)

    def load_plugins(self):
        """load plugins defined in config"""
        self.logger.debug('Loading scanner plugins')
        newplugins, allOK = self._load_all(self.config.get('main', 'plugins'))
        if allOK:
            self.plugins = newplugins
            self.propagate_plugin_defaults()
        return allOK

    def _load_all(self, configstring):
        """load all plugins from config string. returns tuple ([list of loaded instances],allOk)"""
        pluglist = []
        config_re = re.compile(
            r"""^(?P<structured_name>[a-zA-Z0-9\.\_\-]+)(?:\((?P<config_override>[a-zA-Z0-9\.\_\-]+)\))?$""")
        allOK = True
        for plug in configstring.split(','):
            plug = plug.strip()
            if plug == "":
                continue
            m = config_re.match(plug)
            if m is None:
                self.logger.error('Invalid Plugin Syntax: %s' % plug)
                allOK = False
                continue
            structured_name, configoverride = m.groups()
            structured_name = self.get_component_by_alias(structured_name)
            try:
                plugininstance = self._load_component(
                    structured_name, configsection=configoverride)
                pluglist.append(plugininstance)
            except Exception as e:
                self.logger.error('Could not load plugin %s : %s' %
                                  (structured_name, e))
                exc = traceback.format_exc()
                self.logger.error(exc)
                allOK = False

        return pluglist, allOK

    def _load_component(self, structured_name, configsection=None):
        component_names = structured_name.split('.')
        mod = __import__('.'.join(component_names[:-1]))
        for component_name in component_names[1:]:
            mod = getattr(mod, component_name)

        if configsection is None:
            plugininstance = mod(self.config)
        else:
            # check if plugin supports config override
            if 'section' in inspect.signature(mod.__init__).parameters:
                plugininstance = mod(self.config, section=configsection)
            else:
                raise Exception('Cannot set Config Section %s : Plugin %s does not support config override' % (
                    configsection, mod))
        return plugininstance

    def lint(self):
        """check config and plugins, returns the number of errors"""
        errors = 0
        print("milterguard %s" % MILTERGUARD_VERSION)
        print('Loading plugins...')
        if not self.load_plugins():
            print('At least one plugin failed to load')
            errors += 1
        print('Plugin loading complete')

        print("Linting main configuration")
        if not self.checkConfig():
            print("ERROR")
            errors += 1
        else:
            print("OK")

        for plugin in self.plugins:
            print()
            print("Linting Plugin", str(plugin), 'Config section:', str(plugin.section))
            try:
                result = plugin.lint()
            except Exception as e:
                print("ERROR: %s" % e)
                result = False

            if result:
                print("OK")
            else:
                errors = errors + 1
                print("ERROR")
        print("%s errors found." % errors)
        return errors

    def startup(self):
        """load plugins and bind the milter socket. called before privileges are dropped"""
        ok = self.load_plugins()
        if not ok:
            sys.stderr.write(
                "Some plugins failed to load, please check the logs. Aborting.\n")
            self.logger.info('milterguard shut down after fatal error condition')
            sys.exit(1)
        self.logger.info('Loaded plugins: %s' % ', '.join([str(p) for p in self.plugins]))

        server = MilterServer(self, self.config.get('main', 'address'),
                              self.config.get('main', 'protocol'))
        self.servers.append(server)

    def run(self):
        """serve connections on the bound sockets until shutdown"""
        for server in self.servers:
            server_thread = threading.Thread(name='Milter server', target=server.serve, args=())
            server_thread.daemon = True
            server_thread.start()

        self.logger.info('Startup complete')
        # mainthread dummy loop
        while self.stayalive:
            try:
                time.sleep(1)
            except KeyboardInterrupt:
                self.stayalive = False
        self.shutdown()

    def shutdown(self):
        for server in self.servers:
            server.shutdown()
        self.servers = []
        self.stayalive = False
        self.logger.info('Shutdown complete')
