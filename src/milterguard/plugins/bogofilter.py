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
from milterguard.shared import ScannerPlugin, string_to_actioncode, actioncode_to_string, DUNNO
from milterguard.stringencode import force_bString, force_uString
import os
import subprocess
import threading

BOGOSITY_HEADER = 'X-Bogosity'


class BogofilterError(Exception):
    pass


def _is_int(value):
    try:
        int(value)
        return True
    except ValueError:
        return False


class BogofilterPlugin(ScannerPlugin):

    """This plugin classifies messages with bogofilter.

The complete message is piped into ``bogofilter -v -d <dbdir>``, the verdict
line bogofilter prints is added to the message as ``X-Bogosity`` header. The
plugin never rejects, use the header in your delivery agent.

Messages which already carry an X-Bogosity header have been classified
before and are passed on unchanged.

With ``localhold`` enabled, spam without a Received header (submitted
locally, eg. by a compromised web application) is put on hold in the postfix
queue.
"""

    def __init__(self, config, section=None):
        ScannerPlugin.__init__(self, config, section)
        self.requiredvars = {
            'bogofilter': {
                'default': '/usr/bin/bogofilter',
                'description': 'full path to the bogofilter binary',
            },

            'dbdir': {
                'default': '/var/cache/filter',
                'description': 'bogofilter database directory',
            },

            'timeout': {
                'default': '30',
                'description': 'kill bogofilter if it did not finish after this many seconds',
                'validator': _is_int,
            },

            'localhold': {
                'default': '0',
                'description': 'put spam without Received header (outgoing, locally submitted) into the hold queue',
            },

            'problemaction': {
                'default': 'DUNNO',
                'description': 'action if bogofilter fails (DUNNO, DEFER)',
            },
        }
        self.logger = self._logger()

    def _problemcode(self):
        retcode = string_to_actioncode(self.config.get(self.section, 'problemaction'))
        if retcode is not None:
            return retcode
        else:
            return DUNNO

    def examine(self, suspect):
        if suspect.get_header(BOGOSITY_HEADER) is not None:
            self.logger.debug('%s already classified, skipping bogofilter' % suspect.id)
            return DUNNO, None

        try:
            output = self.classify(suspect.get_source())
        except BogofilterError as e:
            self.logger.error('%s bogofilter failed: %s' % (suspect.id, e))
            return self._problemcode(), None

        firstline = output.split('\n', 1)[0]
        if not firstline.startswith(BOGOSITY_HEADER):
            self.logger.warning('%s unexpected bogofilter output: %s' % (suspect.id, firstline))
            return DUNNO, None

        value = firstline[len(BOGOSITY_HEADER):].lstrip(':').strip()
        suspect.add_header(BOGOSITY_HEADER, value)

        if value.startswith('Spam'):
            suspect.tags['spam']['bogofilter'] = True
            self.logger.info('%s detected spam from %s' % (suspect.id, suspect.from_address))
            if self.config.getboolean(self.section, 'localhold') and suspect.get_header('Received') is None:
                self.logger.info('%s quarantine mail from %s' % (suspect.id, suspect.from_address))
                suspect.quarantine('local spam')
        else:
            suspect.tags['spam']['bogofilter'] = False

        return DUNNO, None

    def classify(self, content):
        """
        run bogofilter on the message source

        Returns:
            (str) bogofilter output, the verdict as header line
        Raises:
            BogofilterError: binary missing, bogofilter error or timeout
        """
        bogofilter = self.config.get(self.section, 'bogofilter')
        dbdir = self.config.get(self.section, 'dbdir')
        timeout = self.config.getint(self.section, 'timeout')

        if not os.path.exists(bogofilter):
            raise BogofilterError('could not find bogofilter executable in %s' % bogofilter)

        try:
            process = subprocess.Popen([bogofilter, '-v', '-d', dbdir], stdin=subprocess.PIPE, stdout=subprocess.PIPE)
        except OSError as e:
            raise BogofilterError('could not start bogofilter: %s' % e)

        kill_proc = lambda p: p.kill()
        timer = threading.Timer(timeout, kill_proc, [process])
        timer.start()
        try:
            stdout = process.communicate(force_bString(content))[0]
            exitcode = process.wait()
        finally:
            timer.cancel()

        # 0: spam, 1: ham, 2: unsure, 3: error, <0 killed
        if exitcode < 0:
            raise BogofilterError('bogofilter timeout after %ss' % timeout)
        elif exitcode > 2:
            raise BogofilterError('bogofilter exited with code %s' % exitcode)

        return force_uString(stdout)

    def lint(self):
        allok = self.check_config()
        if not allok:
            return False
        print("Problemaction: %s" % actioncode_to_string(self._problemcode()))
        bogofilter = self.config.get(self.section, 'bogofilter')
        if not os.path.exists(bogofilter):
            print("bogofilter binary not found: %s" % bogofilter)
            return False
        dbdir = self.config.get(self.section, 'dbdir')
        if not os.path.isdir(dbdir):
            print("bogofilter database directory not found: %s" % dbdir)
            return False
        return True
