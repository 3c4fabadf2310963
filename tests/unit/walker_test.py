# -*- coding: UTF-8 -*-
import unittestsetup
import unittest
import base64
from email.mime.multipart import MIMEMultipart

from unittest.mock import MagicMock

from milterguard.dispatcher import ArchiveDispatcher
from milterguard.policy import ExtensionPolicy
from milterguard.shared import PolicyDeny, DepthExceeded, StructuralParseError, FilenameDecodeError
from milterguard.walker import MessageWalker
from testarchives import make_zip, make_message, wrap_message, nested_zip, PLAIN_MESSAGE


class MessageWalkerTestCase(unittest.TestCase):

    def setUp(self):
        policy = ExtensionPolicy()
        self.walker = MessageWalker(policy, ArchiveDispatcher(policy))

    def assertDenied(self, message_bytes):
        try:
            self.walker.inspect(message_bytes)
        except PolicyDeny as e:
            return e
        self.fail('message was not denied')

    def test_denied_attachment(self):
        for filename in ['setup.exe', 'SETUP.EXE', 'Setup.Exe', 'run.bat', 'x.xl']:
            msg = make_message([(filename, b'MZ')])
            e = self.assertDenied(msg.as_bytes())
            self.assertEqual(filename, e.filename)

    def test_allowed_attachment(self):
        for filename in ['report.pdf', 'data.xls', 'README', 'photo.jpeg']:
            msg = make_message([(filename, b'data')])
            self.walker.inspect(msg.as_bytes())

    def test_denied_in_zip(self):
        msg = make_message([('archive.zip', make_zip([('payload.scr', b'MZ')]))])
        e = self.assertDenied(msg.as_bytes())
        self.assertEqual('payload.scr', e.filename)

    def test_denied_in_nested_zip(self):
        msg = make_message([('archive.zip', nested_zip(2, [('payload.scr', b'MZ')]))])
        self.assertDenied(msg.as_bytes())

    def test_depth_exceeded(self):
        msg = make_message([('archive.zip', nested_zip(6, [('readme.txt', b'x')]))])
        e = self.assertDenied(msg.as_bytes())
        self.assertIsInstance(e, DepthExceeded)

    def test_encoded_filename(self):
        encoded = base64.b64encode(u'счет.exe'.encode('koi8_r')).decode('ascii')
        msg = make_message([('=?koi8-r?B?%s?=' % encoded, b'MZ')])
        e = self.assertDenied(msg.as_bytes())
        self.assertEqual(u'счет.exe', e.filename)

    def test_encoded_filename_hiding_archive(self):
        encoded = base64.b64encode(u'архив.zip'.encode('cp1251')).decode('ascii')
        payload = make_zip([('virus.com', b'MZ')])
        msg = make_message([('=?windows-1251?B?%s?=' % encoded, payload)])
        self.assertDenied(msg.as_bytes())

    def test_undecodable_filename(self):
        msg = make_message([('=?x-unknown?B?YWJj?=', b'data')])
        self.assertRaises(FilenameDecodeError, self.walker.inspect, msg.as_bytes())

    def _message_with_disposition(self, disposition):
        return (b'From: a@example.com\r\n'
                b'MIME-Version: 1.0\r\n'
                b'Content-Type: multipart/mixed; boundary="XX"\r\n'
                b'\r\n'
                b'--XX\r\n'
                b'Content-Type: application/octet-stream\r\n'
                b'Content-Transfer-Encoding: base64\r\n'
                b'Content-Disposition: ' + disposition + b'\r\n'
                b'\r\n'
                b'TVo=\r\n'
                b'--XX--\r\n')

    def test_folded_encoded_filename(self):
        message = self._message_with_disposition(
            b'attachment;\r\n filename="=?utf-8?B?ZXZpbC5l?=\r\n =?utf-8?B?eGU=?="')
        e = self.assertDenied(message)
        self.assertEqual('evil.exe', e.filename)

    def test_folded_plain_filename(self):
        message = self._message_with_disposition(b'attachment;\r\n filename="evil.e\r\n xe"')
        e = self.assertDenied(message)
        self.assertEqual('evil.exe', e.filename)

    def test_plain_message(self):
        dispatcher = MagicMock()
        walker = MessageWalker(ExtensionPolicy(), dispatcher)
        walker.inspect(PLAIN_MESSAGE)
        self.assertFalse(dispatcher.inspect.called)

    def test_plain_message_with_attachment_header(self):
        """non multipart messages are not looked at"""
        message = PLAIN_MESSAGE.replace(b'Content-Type: text/plain\r\n',
                                        b'Content-Type: application/octet-stream\r\n'
                                        b'Content-Disposition: attachment; filename="x.exe"\r\n')
        self.walker.inspect(message)

    def test_rfc822_attachment(self):
        inner = make_message([('payload.exe', b'MZ')])
        outer = wrap_message(inner)
        e = self.assertDenied(outer.as_bytes())
        self.assertEqual('payload.exe', e.filename)

    def test_rfc822_attachment_clean(self):
        outer = wrap_message(make_message([('report.pdf', b'data')]))
        self.walker.inspect(outer.as_bytes())

    def test_nested_multipart(self):
        inner = make_message([('payload.vbs', b'x')])
        inner.set_type('multipart/alternative')
        outer = MIMEMultipart('mixed')
        outer.attach(inner)
        self.assertDenied(outer.as_bytes())

    def test_quoted_printable_archive(self):
        from email.mime.application import MIMEApplication
        from email import encoders
        msg = make_message([])
        part = MIMEApplication(make_zip([('evil.hta', b'x')]), 'zip', _encoder=encoders.encode_quopri)
        part.add_header('Content-Disposition', 'attachment', filename='qp.zip')
        msg.attach(part)
        e = self.assertDenied(msg.as_bytes())
        self.assertEqual('evil.hta', e.filename)

    def test_corrupt_base64_archive(self):
        message = (b'From: a@example.com\r\n'
                   b'MIME-Version: 1.0\r\n'
                   b'Content-Type: multipart/mixed; boundary="XX"\r\n'
                   b'\r\n'
                   b'--XX\r\n'
                   b'Content-Type: application/zip\r\n'
                   b'Content-Transfer-Encoding: base64\r\n'
                   b'Content-Disposition: attachment; filename="a.zip"\r\n'
                   b'\r\n'
                   b'UEsDB$$$%%%\r\n'
                   b'--XX--\r\n')
        self.assertRaises(StructuralParseError, self.walker.inspect, message)

    def test_missing_close_boundary(self):
        message = (b'From: a@example.com\r\n'
                   b'MIME-Version: 1.0\r\n'
                   b'Content-Type: multipart/mixed; boundary="XX"\r\n'
                   b'\r\n'
                   b'--XX\r\n'
                   b'Content-Type: text/plain\r\n'
                   b'\r\n'
                   b'hello\r\n')
        self.assertRaises(StructuralParseError, self.walker.inspect, message)

    def test_missing_boundary_parameter(self):
        message = (b'From: a@example.com\r\n'
                   b'MIME-Version: 1.0\r\n'
                   b'Content-Type: multipart/mixed\r\n'
                   b'\r\n'
                   b'hello\r\n')
        self.assertRaises(StructuralParseError, self.walker.inspect, message)

    def test_first_deny_stops(self):
        dispatcher = MagicMock()
        walker = MessageWalker(ExtensionPolicy(), dispatcher)
        msg = make_message([('first.exe', b'MZ'), ('second.zip', make_zip([('a.txt', b'x')]))])
        self.assertRaises(PolicyDeny, walker.inspect, msg.as_bytes())
        self.assertFalse(dispatcher.inspect.called)

    def test_archive_handed_to_dispatcher(self):
        dispatcher = MagicMock()
        walker = MessageWalker(ExtensionPolicy(), dispatcher)
        payload = make_zip([('a.txt', b'x')])
        walker.inspect(make_message([('docs.zip', payload)]).as_bytes())
        dispatcher.inspect.assert_called_once_with('docs.zip', payload, 1)

    def test_idempotent(self):
        denied = make_message([('archive.zip', make_zip([('payload.scr', b'MZ')]))]).as_bytes()
        allowed = make_message([('archive.zip', make_zip([('report.pdf', b'x')]))]).as_bytes()
        for _ in range(3):
            self.assertDenied(denied)
            self.walker.inspect(allowed)
