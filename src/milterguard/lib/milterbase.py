# -*- coding: UTF-8 -*-
# ==============================================================================
# Copyright 2008 Google Inc.
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
# ==============================================================================
#
# Pure python milter interface (does not use libmilter.a), based on ppymilter.
# Handles parsing of milter protocol data (e.g. over a network socket)
# and provides standard arguments to the callbacks in your handler class.
# All protocol data is handled as bytes.
#
# For details of the milter protocol see:
#  http://search.cpan.org/src/AVAR/Sendmail-PMilter-0.96/doc/milter-protocol.txt
#

import logging
import struct

from milterguard.stringencode import force_uString, force_bString

MILTER_VERSION = 2  # Milter version we claim to speak (from pmilter)
MILTER_LEN_BYTES = 4  # from sendmail's include/libmilter/mfdef.h

# Potential milter command codes and their corresponding callbacks.
# From sendmail's include/libmilter/mfdef.h
SMFIC_ABORT = b'A'  # "Abort"
SMFIC_BODY = b'B'  # "Body chunk"
SMFIC_CONNECT = b'C'  # "Connection information"
SMFIC_MACRO = b'D'  # "Define macro"
SMFIC_BODYEOB = b'E'  # "final body chunk (End)"
SMFIC_HELO = b'H'  # "HELO/EHLO"
SMFIC_HEADER = b'L'  # "Header"
SMFIC_MAIL = b'M'  # "MAIL from"
SMFIC_EOH = b'N'  # "EOH"
SMFIC_OPTNEG = b'O'  # "Option negotation"
SMFIC_RCPT = b'R'  # "RCPT to"
SMFIC_QUIT = b'Q'  # "QUIT"
SMFIC_DATA = b'T'  # "DATA"
SMFIC_UNKNOWN = b'U'  # "Any unknown command"

COMMANDS = {
    SMFIC_ABORT: 'Abort',
    SMFIC_BODY: 'Body',
    SMFIC_CONNECT: 'Connect',
    SMFIC_MACRO: 'Macro',
    SMFIC_BODYEOB: 'EndBody',
    SMFIC_HELO: 'Helo',
    SMFIC_HEADER: 'Header',
    SMFIC_MAIL: 'MailFrom',
    SMFIC_EOH: 'EndHeaders',
    SMFIC_OPTNEG: 'OptNeg',
    SMFIC_RCPT: 'RcptTo',
    SMFIC_QUIT: 'Quit',
    SMFIC_DATA: 'Data',
    SMFIC_UNKNOWN: 'Unknown',
}

# To register/mask callbacks during milter protocol negotiation with sendmail.
# From sendmail's include/libmilter/mfdef.h
NO_CALLBACKS = 127  # (all seven callback flags set: 1111111)
CALLBACKS = {
    'OnConnect':    1,  # 0x01 SMFIP_NOCONNECT # Skip SMFIC_CONNECT
    'OnHelo':       2,  # 0x02 SMFIP_NOHELO    # Skip SMFIC_HELO
    'OnMailFrom':   4,  # 0x04 SMFIP_NOMAIL    # Skip SMFIC_MAIL
    'OnRcptTo':     8,  # 0x08 SMFIP_NORCPT    # Skip SMFIC_RCPT
    'OnBody':       16,  # 0x10 SMFIP_NOBODY    # Skip SMFIC_BODY
    'OnHeader':     32,  # 0x20 SMFIP_NOHDRS    # Skip SMFIC_HEADER
    'OnEndHeaders': 64,  # 0x40 SMFIP_NOEOH     # Skip SMFIC_EOH
}

# Acceptable response commands/codes to return to sendmail (with accompanying
# command data).  From sendmail's include/libmilter/mfdef.h
RESPONSE = {
    'ADDRCPT': b'+',  # SMFIR_ADDRCPT    # "add recipient"
    'DELRCPT': b'-',  # SMFIR_DELRCPT    # "remove recipient"
    'ACCEPT': b'a',  # SMFIR_ACCEPT     # "accept"
    'REPLBODY': b'b',  # SMFIR_REPLBODY   # "replace body (chunk)"
    'CONTINUE': b'c',  # SMFIR_CONTINUE   # "continue"
    'DISCARD': b'd',  # SMFIR_DISCARD    # "discard"
    'CONNFAIL': b'f',  # SMFIR_CONN_FAIL  # "cause a connection failure"
    'ADDHEADER': b'h',  # SMFIR_ADDHEADER  # "add header"
    'INSHEADER': b'i',  # SMFIR_INSHEADER  # "insert header"
    'CHGHEADER': b'm',  # SMFIR_CHGHEADER  # "change header"
    'PROGRESS': b'p',  # SMFIR_PROGRESS   # "progress"
    'QUARANTINE': b'q',  # SMFIR_QUARANTINE # "quarantine"
    'REJECT': b'r',  # SMFIR_REJECT     # "reject"
    'TEMPFAIL': b't',  # SMFIR_TEMPFAIL   # "tempfail"
    'REPLYCODE': b'y',  # SMFIR_REPLYCODE  # "reply code etc"
}


def CanonicalizeAddress(addr):
    """Strip angle brackes from email address iff not an empty address ("<>").

    Args:
      addr: the email address to canonicalize (strip angle brackets from).

    Returns:
      The addr with leading and trailing angle brackets removed unless
      the address is "<>" (in which case the string is returned unchanged).
    """
    if addr == '<>':
        return addr
    return addr.lstrip('<').rstrip('>')


def pack_packet(data):
    """prefix milter data with its length"""
    return struct.pack('!I', len(data)) + data


def read_packet(sock):
    """
    Read one length prefixed milter packet from the socket.

    Returns:
      (bytes) command code followed by the command data

    Raises:
      MilterCloseConnection: the peer closed the connection
    """
    lenbuf = _recv_exactly(sock, MILTER_LEN_BYTES)
    packetlen = struct.unpack('!I', lenbuf)[0]
    return _recv_exactly(sock, packetlen)


def _recv_exactly(sock, length):
    buf = []
    read = 0
    while read < length:
        partial_data = sock.recv(length - read)
        if not partial_data:
            raise MilterCloseConnection('connection closed by peer')
        buf.append(partial_data)
        read += len(partial_data)
    return b''.join(buf)


class MilterException(Exception):

    """Parent of all other milter exceptions.  Subclass this: do not
    construct or catch explicitly!"""


class MilterPermFailure(MilterException):

    """Milter exception that indicates a perment failure."""


class MilterTempFailure(MilterException):

    """Milter exception that indicates a temporary/transient failure."""


class MilterCloseConnection(MilterException):

    """Exception that indicates the server should close the milter connection."""


class MilterActionError(MilterException):

    """Exception raised when an action is performed that was not negotiated."""


class MilterDispatcher(object):

    """Dispatcher class for a milter server.  This class accepts entire
    milter commands as bytes (command character + binary data), parses
    the command and binary data appropriately and invokes the appropriate
    callback function in a milter instance.  One MilterDispatcher per socket
    connection."""

    def __init__(self, milter):
        self.__milter = milter
        self.logger = logging.getLogger('milterguard.milter.dispatcher')

    def Dispatch(self, data):
        """Handle a single milter command.  Parses the milter command data,
        invokes the milter handler, and returns the response for the server
        to send on the socket.

        Args:
          data: bytes consisting of a command code character followed by
                binary data for that command code.

        Returns:
          None, a response (bytes) or a list of responses.

        Raises:
          MilterCloseConnection: Indicating the (milter) connection should
                                 be closed.
        """
        (cmd, data) = (data[0:1], data[1:])
        try:
            if cmd not in COMMANDS:
                self.logger.warning('Unknown command code: "%s" ("%s")' % (cmd, data))
                return RESPONSE['CONTINUE']
            command = COMMANDS[cmd]
            parser_callback_name = '_Parse%s' % command
            handler_callback_name = 'On%s' % command

            if not hasattr(self, parser_callback_name):
                self.logger.error('No parser implemented for "%s"' % command)
                return RESPONSE['CONTINUE']

            if not hasattr(self.__milter, handler_callback_name):
                self.logger.warning('Unimplemented command in milter %s: "%s"' % (
                    self.__milter, command))
                return RESPONSE['CONTINUE']

            parser = getattr(self, parser_callback_name)
            callback = getattr(self.__milter, handler_callback_name)
            args = parser(cmd, data)
            return callback(*args)
        except MilterTempFailure as e:
            self.logger.info('Temp Failure: %s' % e)
            return RESPONSE['TEMPFAIL']
        except MilterPermFailure as e:
            self.logger.info('Perm Failure: %s' % e)
            return RESPONSE['REJECT']

    def _ParseOptNeg(self, cmd, data):
        """
        Returns:
          (cmd, ver, actions, protocol), actions and protocol are the
          bitmasks offered by the MTA
        """
        (ver, actions, protocol) = struct.unpack('!III', data[:12])
        return (cmd, ver, actions, protocol)

    def _ParseMacro(self, cmd, data):
        """
        Returns:
          (cmd, macro, data) where macro is the command code the macros are
          for and data a list of strings alternating between name and value.
        """
        (macro, data) = (data[0:1], data[1:])
        values = [force_uString(v) for v in data.split(b'\0')]
        return (cmd, macro, values)

    def _ParseConnect(self, cmd, data):
        """
        Returns:
          (cmd, hostname, family, port, address) where family is the
          address family character (see sendmail libmilter/mfdef.h).
        """
        (hostname, data) = data.split(b'\0', 1)
        family = force_uString(data[0:1])
        if family in ('4', '6'):  # SMFIA_INET / SMFIA_INET6
            port = struct.unpack('!H', data[1:3])[0]
            address = force_uString(data[3:].split(b'\0', 1)[0])
        else:  # SMFIA_UNKNOWN / SMFIA_UNIX
            port = None
            address = None
        return (cmd, force_uString(hostname), family, port, address)

    def _ParseHelo(self, cmd, data):
        return (cmd, force_uString(data.split(b'\0')[0]))

    def _ParseMailFrom(self, cmd, data):
        """
        Returns:
          (cmd, mailfrom, esmtp_info) with the canonicalized address and the
          ESMTP arguments as list of strings
        """
        values = [force_uString(v) for v in data.rstrip(b'\0').split(b'\0')]
        return (cmd, CanonicalizeAddress(values[0]), values[1:])

    def _ParseRcptTo(self, cmd, data):
        values = [force_uString(v) for v in data.rstrip(b'\0').split(b'\0')]
        return (cmd, CanonicalizeAddress(values[0]), values[1:])

    def _ParseHeader(self, cmd, data):
        """
        Returns:
          (cmd, key, val), name and value of the header as bytes
        """
        (key, val) = data.split(b'\0', 1)
        if val.endswith(b'\0'):
            val = val[:-1]
        return (cmd, key, val)

    def _ParseEndHeaders(self, cmd, data):
        return (cmd,)

    def _ParseBody(self, cmd, data):
        return (cmd, data)

    def _ParseEndBody(self, cmd, data):
        return (cmd,)

    def _ParseQuit(self, cmd, data):
        return (cmd,)

    def _ParseAbort(self, cmd, data):
        return (cmd,)

    def _ParseData(self, cmd, data):
        return (cmd, data)


class MilterBase(object):

    """Pure python milter handler base class.  Inherit from this class
    and override any On*() commands you would like your milter to handle.
    Register any actions your milter may perform using the Can*() functions
    during your __init__() (after calling MilterBase.__init()__!) to ensure
    your milter's actions are accepted.
    """

    # Actions we tell sendmail we may perform
    ACTION_ADDHDRS = 1  # 0x01 SMFIF_ADDHDRS    # Add headers
    ACTION_CHGBODY = 2  # 0x02 SMFIF_CHGBODY    # Change body chunks
    ACTION_ADDRCPT = 4  # 0x04 SMFIF_ADDRCPT    # Add recipients
    ACTION_DELRCPT = 8  # 0x08 SMFIF_DELRCPT    # Remove recipients
    ACTION_CHGHDRS = 16  # 0x10 SMFIF_CHGHDRS    # Change or delete headers
    ACTION_QUARANTINE = 32  # 0x20 SMFIF_QUARANTINE # Quarantine message

    def __init__(self):
        self.__actions = 0
        self.__protocol = NO_CALLBACKS
        for (callback, flag) in CALLBACKS.items():
            if hasattr(self, callback):
                self.__protocol &= ~flag

    def Accept(self):
        """Create an 'ACCEPT' response to return to the milter dispatcher."""
        return RESPONSE['ACCEPT']

    def Reject(self):
        """Create a 'REJECT' response to return to the milter dispatcher."""
        return RESPONSE['REJECT']

    def Discard(self):
        """Create a 'DISCARD' response to return to the milter dispatcher."""
        return RESPONSE['DISCARD']

    def TempFail(self):
        """Create a 'TEMPFAIL' response to return to the milter dispatcher."""
        return RESPONSE['TEMPFAIL']

    def Continue(self):
        """Create a 'CONTINUE' response to return to the milter dispatcher."""
        return RESPONSE['CONTINUE']

    def CustomReply(self, code, text):
        """Create a 'REPLYCODE' (custom) response to return to the milter
        dispatcher.

        Args:
          code: Integer or digit string (should be \\d\\d\\d).  NOTICE: A '421' reply
                code will cause sendmail to close the connection after responding!
          text: Code reason/explaination to send to the user.
        """
        return RESPONSE['REPLYCODE'] + force_bString('%s %s' % (code, text)) + b'\0'

    def AddHeader(self, name, value):
        """Construct an ADDHEADER reply that the client can send during OnEndBody.

        Args:
          name: The name of the header to add
          value: The value of the header
        """
        self.__VerifyCapability(self.ACTION_ADDHDRS)
        return RESPONSE['ADDHEADER'] + force_bString(name) + b'\0' + force_bString(value) + b'\0'

    def Quarantine(self, reason):
        """Construct a QUARANTINE reply that the client can send during OnEndBody.

        Args:
          reason: reason shown in the MTA hold queue
        """
        self.__VerifyCapability(self.ACTION_QUARANTINE)
        return RESPONSE['QUARANTINE'] + force_bString(reason) + b'\0'

    def ReturnOnEndBodyActions(self, actions, final=None):
        """Construct an OnEndBody response that can consist of multiple actions
        followed by a final response, Continue() by default.

        All message mutations (all adds/changes/deletes to envelope/header/body)
        must be sent as response to the OnEndBody callback.
        """
        if final is None:
            final = self.Continue()
        return actions[:] + [final]

    def _ResetState(self):
        """Clear out any per-message data. Calls the 'OnResetState' callback
        milters use to forget the message just handled."""
        try:
            callback = self.OnResetState
        except AttributeError:
            logging.getLogger('milterguard.milter').warning(
                'No OnResetState() callback is defined for this milter.')
            return
        callback()

    # you probably should not be overriding this  :-p
    def OnOptNeg(self, cmd, ver, actions, protocol):
        """Callback for the 'OptNeg' (option negotiation) milter command.

        Option negotation is based on:
        (1) Command callback functions defined by your handler class.
        (2) Stated actions your milter may perform by invoking the
            "self.CanFoo()" functions during your milter's __init__().
        """
        out = struct.pack('!III', MILTER_VERSION,
                          self.__actions & actions,
                          self.__protocol & protocol)
        return cmd + out

    def OnMacro(self, cmd, macro_cmd, data):
        """Callback for the 'Macro' milter command: no response required."""
        return None

    def OnData(self, cmd, data):
        return self.Continue()

    def OnQuit(self, cmd):
        """Callback for the 'Quit' milter command: close the milter connection."""
        raise MilterCloseConnection('received quit command')

    def OnAbort(self, cmd):
        """Callback for the 'Abort' milter command. Per-message data is
        cleared, no response is sent."""
        self._ResetState()
        return None

    def OnEndBody(self, cmd):
        return self.Continue()

    # Call these from __init__() to tell sendmail you may perform these actions
    def CanAddHeaders(self):
        """Register that our milter may perform the action 'ADDHDRS'."""
        self.__actions |= self.ACTION_ADDHDRS

    def CanChangeHeaders(self):
        """Register that our milter may perform the action 'CHGHDRS'."""
        self.__actions |= self.ACTION_CHGHDRS

    def CanQuarantine(self):
        """Register that our milter may perform the action 'QUARANTINE'."""
        self.__actions |= self.ACTION_QUARANTINE

    def __VerifyCapability(self, action):
        if not (self.__actions & action):
            logging.getLogger('milterguard.milter').error(
                'Error: Attempted to perform an action that was not requested.')
            raise MilterActionError('Action not requested in __init__')
