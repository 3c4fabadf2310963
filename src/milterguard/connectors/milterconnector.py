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
import email
import logging
import time
import traceback

from milterguard.lib.milterbase import MilterBase, MilterDispatcher, MilterCloseConnection, \
    read_packet, pack_packet
from milterguard.shared import Suspect, DUNNO, ACCEPT, DELETE, REJECT, DEFER, actioncode_to_string


class MilterSession(MilterBase):

    """
    One milter connection from the MTA. Collects envelope, headers and body
    of each message into a Suspect, runs the plugins at the end of the body
    and answers the MTA with their decision. One connection may carry
    several messages.
    """

    def __init__(self, socket, plugins):
        MilterBase.__init__(self)
        self.socket = socket
        self.plugins = plugins
        self.CanAddHeaders()
        self.CanChangeHeaders()
        self.CanQuarantine()

        self.logger = logging.getLogger('milterguard.miltersession')
        self.__milter_dispatcher = MilterDispatcher(self)

        self.helo = None
        self.addr = None
        self.rdns = None
        self.OnResetState()

    def OnResetState(self):
        self.from_address = None
        self.recipients = []
        self.headers = []
        self.buffer = []

    def OnConnect(self, cmd, hostname, family, port, address):
        if family not in ('4', '6'):  # we don't handle unix socket
            return self.Continue()
        if hostname is None or hostname == '[%s]' % address:
            hostname = 'unknown'

        self.rdns = hostname
        self.addr = address
        return self.Continue()

    def OnHelo(self, cmd, helo):
        self.helo = helo
        return self.Continue()

    def OnMailFrom(self, cmd, mail_from, args):
        # a new transaction on the same connection
        self.OnResetState()
        self.from_address = mail_from
        return self.Continue()

    def OnRcptTo(self, cmd, rcpt_to, esmtp_info):
        self.recipients.append(rcpt_to)
        return self.Continue()

    def OnHeader(self, cmd, header, value):
        self.headers.append((header, value))
        self.buffer.append(header + b': ' + value + b'\r\n')
        return self.Continue()

    def OnEndHeaders(self, cmd):
        self.buffer.append(b'\r\n')
        if self.can_skip_body():
            self.logger.debug('not a multipart message from %s, accepting after headers' % self.from_address)
            self.OnResetState()
            return self.Accept()
        return self.Continue()

    def OnBody(self, cmd, data):
        self.buffer.append(data)
        return self.Continue()

    def OnEndBody(self, cmd):
        suspect = self.get_suspect()
        action, message = self.run_plugins(suspect)
        self.logger.info('%s: %s' % (suspect, message if message is not None else ''))
        answer = self.build_answer(suspect, action, message)
        self.OnResetState()
        return answer

    def can_skip_body(self):
        """
        True if no plugin needs the body: all plugins only look at multipart
        messages and the message is not multipart
        """
        if len(self.plugins) == 0:
            return False
        for plugin in self.plugins:
            if not plugin.multipart_only:
                return False
        headerblock = b''.join(self.buffer)
        msgrep = email.message_from_bytes(headerblock)
        return msgrep.get_content_maintype() != 'multipart'

    def get_suspect(self):
        suspect = Suspect(self.from_address, self.recipients, b''.join(self.buffer))
        if self.helo is not None and self.addr is not None and self.rdns is not None:
            suspect.clientinfo = self.helo, self.addr, self.rdns
        return suspect

    def run_plugins(self, suspect):
        """Run scannerplugins on suspect, returns the final (action, message)"""
        for plugin in self.plugins:
            try:
                self.logger.debug('Running plugin %s' % plugin)
                starttime = time.time()
                ans = plugin.examine(suspect)
                plugintime = time.time() - starttime
                suspect.tags['scantimes'].append((plugin.section, plugintime))
                message = None
                if type(ans) is tuple:
                    result, message = ans
                else:
                    result = ans

                if result is None:
                    result = DUNNO

                suspect.tags['decisions'].append((plugin.section, result))

                if result == DUNNO:
                    continue
                elif result in (ACCEPT, DELETE, REJECT, DEFER):
                    self.logger.debug('Plugin says: %s. Skipping all other tests' % actioncode_to_string(result))
                    return result, message
                else:
                    self.logger.error('Invalid Message action Code: %s. Using DUNNO' % result)

            except Exception:
                # a crashing plugin must not let the message pass unchecked
                exc = traceback.format_exc()
                self.logger.error('Plugin %s failed: %s' % (str(plugin), exc))
                suspect.tags['decisions'].append((plugin.section, DEFER))
                return DEFER, 'internal error in %s' % plugin
        return DUNNO, None

    def build_answer(self, suspect, action, message):
        """list of milter responses for the decision"""
        # apparently milter wants extended status codes
        if action == REJECT:
            code, text = split_reply(message, 550, 'Message rejected')
            if code // 100 != 5:
                code = 550
            if not text.startswith("5."):
                text = "5.7.1 %s" % text
            return self.CustomReply(code, text)
        if action == DEFER:
            code, text = split_reply(message, 450, 'Temporary failure, try again later')
            if code // 100 != 4:
                code = 450
            if not text.startswith("4."):
                text = "4.7.1 %s" % text
            return self.CustomReply(code, text)
        if action == DELETE:
            return self.Discard()

        actions = []
        for name, value in suspect.addheaders.items():
            actions.append(self.AddHeader(name, value))
        if suspect.quarantine_reason is not None:
            actions.append(self.Quarantine(suspect.quarantine_reason))
        return self.ReturnOnEndBodyActions(actions, self.Accept())

    def handlesession(self):
        """serve the connection until the MTA quits or closes it"""
        try:
            while True:
                data = read_packet(self.socket)
                response = self.__milter_dispatcher.Dispatch(data)
                if type(response) == list:
                    for r in response:
                        self.__send_response(r)
                elif response:
                    self.__send_response(response)
        except MilterCloseConnection as e:
            self.logger.debug('Closing connection (%s)' % e)
        except OSError as e:
            self.logger.warning('Milter connection failed: %s' % e)
        finally:
            try:
                self.socket.close()
            except OSError:
                pass

    def __send_response(self, response):
        self.socket.sendall(pack_packet(response))


def split_reply(message, defaultcode, defaulttext):
    """
    split a reply like '552 Message blocked' into code and text. Messages
    without a leading three digit code get defaultcode.
    """
    if message is None or message.strip() == '':
        return defaultcode, defaulttext
    parts = message.strip().split(None, 1)
    if len(parts[0]) == 3 and parts[0].isdigit():
        if len(parts) == 1:
            return int(parts[0]), defaulttext
        return int(parts[0]), parts[1]
    return defaultcode, message.strip()
