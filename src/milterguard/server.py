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
import logging
import os
import socket
import stat
import threading

from milterguard.connectors.milterconnector import MilterSession

UNIX_SOCKET_MODE = 0o660


def parse_tcp_address(address):
    """'host:port' or 'port' -> (host, port)"""
    if ':' in address:
        host, port = address.rsplit(':', 1)
        host = host.strip('[]')
    else:
        host, port = '127.0.0.1', address
    return host, int(port)


class MilterServer(object):

    """
    Listens for milter connections on a unix domain socket or a tcp port and
    serves each connection in its own thread.
    """

    def __init__(self, controller, address, protocol='unix'):
        if protocol not in ('unix', 'tcp'):
            raise ValueError('invalid protocol name: %s' % protocol)
        self.controller = controller
        self.address = address
        self.protocol = protocol
        self.logger = logging.getLogger('milterguard.incoming.%s' % protocol)
        self.stayalive = True
        self._socket = self._bind()

    def _bind(self):
        if self.protocol == 'unix':
            # make sure the socket does not exist
            try:
                os.unlink(self.address)
            except FileNotFoundError:
                pass
            sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
            sock.bind(self.address)
            os.chmod(self.address, UNIX_SOCKET_MODE)
        else:
            host, port = parse_tcp_address(self.address)
            addr_f = socket.getaddrinfo(host, 0)[0][0]
            sock = socket.socket(addr_f, socket.SOCK_STREAM)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((host, port))
        sock.listen(5)
        self.logger.debug('bound milter %s socket %s' % (self.protocol, self.address))
        return sock

    def getsockname(self):
        return self._socket.getsockname()

    def shutdown(self):
        self.logger.info('Milter server on %s closing' % self.address)
        self.stayalive = False
        try:
            self._socket.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        self._socket.close()
        if self.protocol == 'unix':
            try:
                if stat.S_ISSOCK(os.stat(self.address).st_mode):
                    os.unlink(self.address)
            except FileNotFoundError:
                pass
            except OSError as e:
                # privileges were dropped after binding
                self.logger.warning('Could not remove socket %s: %s' % (self.address, e))

    def serve(self):
        threading.current_thread().name = 'Milter Server on %s' % self.address
        self.logger.info('Milter server running on %s %s' % (self.protocol, self.address))

        while self.stayalive:
            try:
                sock, addr = self._socket.accept()
            except OSError as e:
                if self.stayalive:
                    self.logger.error('Exception in serve(): %s' % e)
                break
            if not self.stayalive:
                sock.close()
                break
            self.logger.debug('Incoming milter connection')
            session = MilterSession(sock, self.controller.plugins)
            worker = threading.Thread(name='Milter session', target=session.handlesession)
            worker.daemon = True
            worker.start()
