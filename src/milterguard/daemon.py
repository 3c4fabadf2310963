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
import argparse
import atexit
import configparser
import grp
import logging
import os
import pwd
import signal
import sys

from milterguard import MILTERGUARD_VERSION
from milterguard.core import MainController
from milterguard.logtools import logConfig

DEFAULT_CONFIG = '/etc/milterguard/milterguard.conf'
DEFAULT_LOGCONFIG = '/etc/milterguard/logging.conf'
DEFAULT_PIDFILE = '/var/run/milterguard.pid'


class DaemonStuff(object):

    """Makes a daemon out of a python program"""

    def __init__(self, pidfilename):
        self.pidfile = pidfilename

    def delpid(self):
        """Delete the pid file"""
        try:
            os.remove(self.pidfile)
        except OSError:
            pass

    def createDaemon(self):
        """Detach a process from the controlling terminal and run it in the
        background as a daemon.
        Example from: http://aspn.activestate.com/ASPN/Cookbook/Python/Recipe/278731
        """
        pid = os.fork()
        if pid != 0:
            os._exit(0)    # Exit parent of the first child.

        os.setsid()
        pid = os.fork()    # Fork a second child.
        if pid != 0:
            os._exit(0)

        os.chdir('/')
        os.umask(0o027)

        devnull = os.open('/dev/null', os.O_RDWR)
        for fd in (0, 1, 2):
            os.dup2(devnull, fd)

        # write pidfile
        atexit.register(self.delpid)
        with open(self.pidfile, 'w') as fp:
            fp.write("%s\n" % os.getpid())

    def drop_privs(self, username='nobody', groupname='nobody'):
        """Drop privileges of the current process to specified unprivileged user and group.
        The process keeps all supplemental groups of the user."""
        try:
            running_uid = pwd.getpwnam(username).pw_uid
            running_gid = grp.getgrnam(groupname).gr_gid
        except KeyError:
            raise Exception('Can not drop privileges, user %s or group %s does not exist' % (
                username, groupname))

        os.setgid(running_gid)
        gids = [g.gr_gid for g in grp.getgrall() if username in g.gr_mem]
        gids.append(pwd.getpwnam(username).pw_gid)
        os.setgroups(list(set(gids)))
        os.setuid(running_uid)


def get_parser():
    parser = argparse.ArgumentParser(
        prog='milterguard',
        description='milter rejecting dangerous attachments and classifying spam with bogofilter')
    parser.add_argument('--config', default=DEFAULT_CONFIG, help='configuration file')
    parser.add_argument('--logconfig', default=DEFAULT_LOGCONFIG, help='logging configuration file')
    parser.add_argument('--lint', action='store_true', help='check configuration and exit')
    parser.add_argument('--proto', choices=['unix', 'tcp'], help='protocol family, overrides [main] protocol')
    parser.add_argument('--addr', help='unix socket path or host:port, overrides [main] address')
    parser.add_argument('--foreground', action='store_true', help='do not fork')
    parser.add_argument('--pidfile', default=DEFAULT_PIDFILE, help='pid file written when running as daemon')
    parser.add_argument('--version', action='version', version='%(prog)s ' + MILTERGUARD_VERSION)
    return parser


def load_config(filename, args):
    config = configparser.RawConfigParser()
    if os.path.exists(filename):
        with open(filename) as fp:
            config.read_file(fp)
    else:
        sys.stderr.write('Configuration file %s not found, using defaults\n' % filename)

    if args.proto is not None or args.addr is not None:
        if not config.has_section('main'):
            config.add_section('main')
        if args.proto is not None:
            config.set('main', 'protocol', args.proto)
        if args.addr is not None:
            config.set('main', 'address', args.addr)
    return config


def main(argv=None):
    args = get_parser().parse_args(argv)
    config = load_config(args.config, args)

    controller = MainController(config)
    controller.propagate_core_defaults()

    if args.lint:
        logConfig(lint=True).configure()
        errors = controller.lint()
        return 1 if errors else 0

    logConfig(logConfigFile=args.logconfig).configure()
    logger = logging.getLogger('milterguard')
    logger.info('milterguard %s starting (config %s, identifier %s)' % (
        MILTERGUARD_VERSION, args.config, config.get('main', 'identifier')))

    daemon = DaemonStuff(args.pidfile)
    if not args.foreground and config.getboolean('main', 'daemonize'):
        daemon.createDaemon()

    def sigterm(signum, frame):
        logger.info('Received signal %s, shutting down' % signum)
        controller.stayalive = False

    signal.signal(signal.SIGTERM, sigterm)

    # the socket is created before dropping privileges
    controller.startup()

    if os.getuid() == 0:
        user = config.get('main', 'user')
        group = config.get('main', 'group')
        logger.info('dropping privileges to %s:%s' % (user, group))
        daemon.drop_privs(user, group)

    controller.run()
    return 0
