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
import time
import uuid
import email
import configparser
from collections import namedtuple

# constants

DUNNO = 0  # go on
ACCEPT = 1  # accept message, no further tests
DELETE = 2  # blackhole, no further tests
REJECT = 3  # reject, no further tests
DEFER = 4  # defer, no further tests

ALLCODES = {
    'DUNNO': DUNNO,
    'ACCEPT': ACCEPT,
    'DELETE': DELETE,
    'REJECT': REJECT,
    'DEFER': DEFER,
}


def actioncode_to_string(actioncode):
    """Return the human readable string for this code"""
    for key, val in list(ALLCODES.items()):
        if val == actioncode:
            return key
    if actioncode is None:
        return "NULL ACTION CODE"
    return 'INVALID ACTION CODE %s' % actioncode


def string_to_actioncode(actionstring):
    """return the code for this action"""
    upper = actionstring.upper().strip()

    # support DISCARD as alias for DELETE
    if upper == 'DISCARD':
        upper = 'DELETE'

    if upper not in ALLCODES:
        return None
    return ALLCODES[upper]


def yesno(val):
    """returns the string 'yes' for values that evaluate to True, 'no' otherwise"""
    if val:
        return 'yes'
    else:
        return 'no'


#------------#
#- Errors   -#
#------------#
class MilterGuardError(Exception):
    """Base class for all errors raised while inspecting a message"""


class PolicyDeny(MilterGuardError):
    """
    A denylisted file was found somewhere in the message. Terminal: once raised
    no further part or archive entry is looked at.
    """

    def __init__(self, reason, filename=None):
        super(PolicyDeny, self).__init__(reason)
        self.reason = reason
        self.filename = filename


class DepthExceeded(PolicyDeny):
    """Archives are nested deeper than the configured maximum"""


class SizeExceeded(PolicyDeny):
    """A nested archive would expand beyond the configured extraction limit"""


class StructuralParseError(MilterGuardError):
    """Message, multipart or container structure could not be parsed"""


class FilenameDecodeError(StructuralParseError):
    """An encoded attachment filename could not be decoded"""


class ContainerError(StructuralParseError):
    """The directory structure of an archive is corrupt"""


class RecoverableEntryError(MilterGuardError):
    """A single archive entry could not be read, its siblings can still be checked"""


class Verdict(namedtuple('Verdict', ['action', 'reason'])):
    """
    Final decision of the attachment inspection for one message.

    action is ACCEPT or REJECT, reason is the text to hand back to the
    MTA for a rejection.
    """
    __slots__ = ()

    def __new__(cls, action=ACCEPT, reason=None):
        return super(Verdict, cls).__new__(cls, action, reason)

    @property
    def allowed(self):
        return self.action != REJECT

    def __str__(self):
        if self.reason is None:
            return actioncode_to_string(self.action)
        return '%s (%s)' % (actioncode_to_string(self.action), self.reason)


class Suspect(object):

    """
    The suspect represents the message to be scanned. Each scanner plugin will be presented
    with a suspect and may tag it, add headers or request a quarantine.
    """

    def __init__(self, from_address, recipients, source):
        self.source = source
        """holds the message source (header block, empty line and body) as bytes"""

        self._msgrep = None

        # tags set by plugins
        self.tags = {}
        self.tags['spam'] = {}
        self.tags['blocked'] = {}
        self.tags['decisions'] = []
        self.tags['scantimes'] = []

        self.size = len(source)

        if from_address is None or from_address == '<>':
            from_address = ''
        self.from_address = from_address

        if isinstance(recipients, list):
            self.recipients = recipients
        else:
            self.recipients = [recipients, ]

        self.timestamp = time.time()
        self.id = uuid.uuid4().hex

        # headers which are added when the message is accepted
        self.addheaders = {}

        # set by plugins to request the MTA to hold the message
        self.quarantine_reason = None

        self.clientinfo = None
        """holds client info tuple: helo, ip, reversedns"""

    @property
    def to_address(self):
        """Returns the first recipient address"""
        try:
            return self.recipients[0]
        except IndexError:
            return None

    def get_tag(self, key, defaultvalue=None):
        """returns the tag value. if the tag is not found, return defaultvalue instead (None if no defaultvalue passed)"""
        if key not in self.tags:
            return defaultvalue
        return self.tags[key]

    def set_tag(self, key, value):
        """Set a new tag"""
        self.tags[key] = value

    def is_spam(self):
        """Returns True if ANY of the spam engines tagged this suspect as spam"""
        for key in list(self.tags['spam'].keys()):
            if self.tags['spam'][key]:
                return True
        return False

    def is_blocked(self):
        """Returns True if ANY plugin tagged this suspect as blocked"""
        for key in list(self.tags['blocked'].keys()):
            if self.tags['blocked'][key]:
                return True
        return False

    def add_header(self, key, value):
        """add a header to the message when the MTA accepts it"""
        self.addheaders[key] = value

    def quarantine(self, reason):
        """ask the MTA to put the message on hold"""
        self.quarantine_reason = reason

    def get_message_rep(self):
        """returns the python email api representation of this suspect"""
        if self._msgrep is None:
            self._msgrep = email.message_from_bytes(self.source)
        return self._msgrep

    def get_header(self, name, defaultvalue=None):
        """value of the first header with this name"""
        return self.get_message_rep().get(name, defaultvalue)

    def get_source(self):
        return self.source

    def __str__(self):
        """representation good for logging"""
        decision = DUNNO
        if len(self.tags['decisions']) > 0:
            decision = self.tags['decisions'][-1][1]
        return "Suspect %s: from=%s to=%s size=%s spam=%s blocked=%s quarantine=%s decision=%s" % (
            self.id, self.from_address, self.to_address, self.size, yesno(self.is_spam()),
            yesno(self.is_blocked()), self.quarantine_reason, actioncode_to_string(decision))


# it is important that this class explicitly extends from object, or
# __subclasses__() will not work!


class BasicPlugin(object):

    """Base class for all plugins"""

    # plugins that only care about multipart messages allow the milter
    # session to accept everything else right after the headers
    multipart_only = False

    def __init__(self, config, section=None):
        if section is None:
            self.section = self.__class__.__name__
        else:
            self.section = section

        self.config = config
        self.requiredvars = {}

    def _logger(self):
        """returns the logger for this plugin"""
        myclass = self.__class__.__name__
        loggername = "milterguard.plugin.%s" % myclass
        return logging.getLogger(loggername)

    def lint(self):
        return self.check_config()

    def check_config(self):
        """Print missing / invalid configuration settings"""
        allOK = True
        for config, infodic in self.requiredvars.items():
            section = self.section
            if 'section' in infodic:
                section = infodic['section']

            try:
                var = self.config.get(section, config)
                if 'validator' in infodic:
                    if not infodic["validator"](var):
                        print("Validation failed for [%s] :: %s" % (
                            section, config))
                        allOK = False
            except configparser.NoSectionError:
                print("Missing configuration section [%s] :: %s" % (
                    section, config))
                allOK = False
            except configparser.NoOptionError:
                print("Missing configuration value [%s] :: %s" % (
                    section, config))
                allOK = False

        return allOK

    def __str__(self):
        classname = self.__class__.__name__
        if self.section == classname:
            return classname
        else:
            return '%s(%s)' % (classname, self.section)


class ScannerPlugin(BasicPlugin):

    """Scanner Plugin Base Class"""

    def examine(self, suspect):
        self._logger().warning('Unimplemented examine() method')


def propagate_defaults(requiredvars, config, defaultsection=None):
    """propagate defaults from requiredvars if they are missing in config"""
    for option, infodic in requiredvars.items():
        if 'section' in infodic:
            section = infodic['section']
        else:
            section = defaultsection

        default = infodic['default']

        if not config.has_section(section):
            config.add_section(section)

        if not config.has_option(section, option):
            config.set(section, option, default)
