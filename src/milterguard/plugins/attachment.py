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
from milterguard.shared import ScannerPlugin, Verdict, string_to_actioncode, actioncode_to_string, \
    ACCEPT, DUNNO, REJECT, DEFER, PolicyDeny, StructuralParseError
from milterguard.policy import ExtensionPolicy
from milterguard.dispatcher import ArchiveDispatcher
from milterguard.walker import MessageWalker


def _is_int(value):
    try:
        int(value)
        return True
    except ValueError:
        return False


class ExtensionFilter(ScannerPlugin):

    """This plugin rejects messages with dangerous attachments.

Every attachment name is decoded (RFC 2047 encoded words, including the
legacy cyrillic charsets koi8-r and windows-1251) and its extension checked
against a denylist of executables, scripts and shortcuts. zip, rar and tar
attachments are opened in memory and the names of their entries are checked
the same way. Archives inside archives are followed down to ``maxdepth``
levels, deeper nesting rejects the message.

Only multipart messages can carry attachments, plain messages are accepted
without looking at the body.

Actions: REJECT with ``rejectmessage`` if a denied file is found. If the
message or one of its archives can not be parsed, ``problemaction`` is
returned.
"""

    multipart_only = True

    def __init__(self, config, section=None):
        ScannerPlugin.__init__(self, config, section)
        self.requiredvars = {
            'denylist': {
                'default': '',
                'description': 'comma separated list of denied file extensions. leave empty for the builtin list (.exe, .scr, .js, ...)',
            },

            'maxdepth': {
                'default': '5',
                'description': 'how many levels of archives inside archives are opened. deeper nesting is rejected',
                'validator': _is_int,
            },

            'archivecontentmaxsize': {
                'default': '10000000',
                'description': 'only extract nested archives up to this amount of (uncompressed) bytes. larger nested archives are rejected',
                'validator': _is_int,
            },

            'rejectmessage': {
                'default': '552 Message blocked due to blacklisted attachment',
                'description': 'smtp reply when a denied attachment is found',
            },

            'problemaction': {
                'default': 'DEFER',
                'description': 'action if the message structure can not be parsed (DUNNO, DEFER, REJECT)',
            },
        }
        self.logger = self._logger()
        self.walker = None

    def _get_walker(self):
        if self.walker is None:
            policy = ExtensionPolicy.from_config(self.config, self.section)
            dispatcher = ArchiveDispatcher(
                policy,
                maxdepth=self.config.getint(self.section, 'maxdepth'),
                archivecontentmaxsize=self.config.getint(self.section, 'archivecontentmaxsize'))
            self.walker = MessageWalker(policy, dispatcher)
        return self.walker

    def check(self, message_bytes):
        """
        Inspect a complete message.

        Returns:
            Verdict(ACCEPT) or Verdict(REJECT, rejectmessage)

        Raises:
            StructuralParseError: the message or an attached archive is corrupt
        """
        try:
            self._get_walker().inspect(message_bytes)
        except PolicyDeny as e:
            self.logger.info('denied attachment %s: %s' % (e.filename, e.reason))
            return Verdict(REJECT, self.config.get(self.section, 'rejectmessage'))
        return Verdict(ACCEPT)

    def _problemcode(self):
        retcode = string_to_actioncode(self.config.get(self.section, 'problemaction'))
        if retcode is not None:
            return retcode
        else:
            # in case of invalid problem action
            return DEFER

    def examine(self, suspect):
        try:
            verdict = self.check(suspect.get_source())
        except StructuralParseError as e:
            self.logger.warning('%s could not parse message: %s' % (suspect.id, e))
            return self._problemcode(), 'could not parse message structure'

        if verdict.allowed:
            return DUNNO, None

        suspect.tags['blocked']['ExtensionFilter'] = True
        return REJECT, verdict.reason

    def lint(self):
        allok = self.check_config()
        if allok:
            problemaction = self.config.get(self.section, 'problemaction')
            if string_to_actioncode(problemaction) is None:
                print("Invalid problemaction: %s" % problemaction)
                allok = False
            else:
                print("Problemaction: %s" % actioncode_to_string(string_to_actioncode(problemaction)))
            print("Denied extensions: %s" % ", ".join(sorted(self._get_walker().policy.denylist)))
        return allok
