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
import email
import email.errors
import email.message
import logging

from milterguard.filenamedecode import decode_filename
from milterguard.policy import file_extension
from milterguard.shared import PolicyDeny, StructuralParseError

# defects which mean we did not see the complete multipart structure
MULTIPART_DEFECTS = (
    email.errors.NoBoundaryInMultipartDefect,
    email.errors.StartBoundaryNotFoundDefect,
    email.errors.CloseBoundaryNotFoundDefect,
    email.errors.MultipartInvariantViolationDefect,
)

BASE64_DEFECTS = (
    email.errors.InvalidBase64CharactersDefect,
    email.errors.InvalidBase64PaddingDefect,
    email.errors.InvalidBase64LengthDefect,
)


class MessageWalker(object):
    """
    Walks the MIME tree of a message and checks every attachment name.
    Archive attachments are handed to the ArchiveDispatcher.
    """

    def __init__(self, policy, dispatcher):
        self.policy = policy
        self.dispatcher = dispatcher
        self.logger = logging.getLogger('milterguard.walker')

    def inspect(self, message_bytes):
        """
        Args:
            message_bytes (bytes): complete message, header block, empty line and body

        Raises:
            PolicyDeny: a denied attachment was found
            StructuralParseError: message, filename or archive could not be parsed
        """
        msgrep = email.message_from_bytes(message_bytes)
        self._walk_message(msgrep)

    def _walk_message(self, msgrep):
        if msgrep.get_content_maintype() != 'multipart':
            return
        self._walk_multipart(msgrep)

    def _walk_multipart(self, container):
        for defect in container.defects:
            if isinstance(defect, MULTIPART_DEFECTS):
                raise StructuralParseError('broken multipart structure: %s' % defect.__class__.__name__)
        if not container.is_multipart():
            raise StructuralParseError('multipart body without parts')

        for part in container.get_payload():
            self._walk_part(part)

    def _walk_part(self, part):
        maintype = part.get_content_maintype()

        if maintype == 'multipart':
            self._walk_multipart(part)
            return

        if maintype == 'message':
            # attached mails are checked like the mail itself
            for submessage in part.get_payload():
                if isinstance(submessage, email.message.Message):
                    self._walk_message(submessage)

        rawname = part.get_filename()
        if rawname is None:
            return

        filename = decode_filename(rawname)
        extension = file_extension(filename)
        self.logger.debug('attachment %s content-type %s' % (filename, part.get_content_type()))
        if not self.policy.is_allowed(extension):
            raise PolicyDeny('denied file extension %s' % extension, filename)

        if not self.policy.is_container_extension(filename):
            return

        payload = self._decoded_payload(part)
        if payload is None:
            return
        self.dispatcher.inspect(filename, payload, 1)

    def _decoded_payload(self, part):
        """undo the content transfer encoding, corrupt base64 is an error"""
        known_defects = len(part.defects)
        payload = part.get_payload(decode=True)
        for defect in part.defects[known_defects:]:
            if isinstance(defect, BASE64_DEFECTS):
                raise StructuralParseError('corrupt base64 attachment: %s' % defect.__class__.__name__)
        return payload
