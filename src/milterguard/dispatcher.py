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

from milterguard.archives import Archivehandle
from milterguard.policy import file_extension
from milterguard.shared import PolicyDeny, DepthExceeded, SizeExceeded, RecoverableEntryError


class ArchiveDispatcher(object):
    """
    Looks into an archive attachment and every archive nested inside it.

    Each entry name is checked against the extension policy, entries which
    are archives themselves are extracted into memory and inspected one level
    deeper. The first denied name aborts the whole inspection.
    """

    def __init__(self, policy, maxdepth=5, archivecontentmaxsize=10000000):
        self.policy = policy
        self.maxdepth = maxdepth
        self.archivecontentmaxsize = archivecontentmaxsize
        self.logger = logging.getLogger('milterguard.dispatcher')

    def inspect(self, filename, payload, depth=1):
        """
        Args:
            filename (str): name of the attachment or archive entry holding payload
            payload (bytes): the archive content
            depth (int): nesting level, 1 for an archive attached to the message

        Raises:
            PolicyDeny: a denied name was found (DepthExceeded, SizeExceeded are PolicyDeny too)
            StructuralParseError: the archive itself is corrupt
        """
        archive_type = self.policy.container_type(filename)
        if archive_type is None:
            return

        if depth > self.maxdepth:
            raise DepthExceeded('archive nesting deeper than %s levels' % self.maxdepth, filename)

        self.logger.debug('inspecting %s archive %s at depth %s' % (archive_type, filename, depth))
        handle = Archivehandle(archive_type, payload)
        try:
            for entry in handle.entries():
                self._inspect_entry(handle, entry, depth)
        finally:
            handle.close()

    def _inspect_entry(self, handle, entry, depth):
        name = entry.name
        extension = file_extension(name)
        if not self.policy.is_allowed(extension):
            raise PolicyDeny('denied file extension %s in archive' % extension, name)

        if not self.policy.is_container_extension(name):
            return

        try:
            content = handle.extract(entry, self.archivecontentmaxsize)
        except RecoverableEntryError as e:
            self.logger.info('skipping archive entry %s: %s' % (name, e))
            return

        if content is None:
            raise SizeExceeded('nested archive larger than %s bytes' % self.archivecontentmaxsize, name)

        self.inspect(name, content, depth + 1)
