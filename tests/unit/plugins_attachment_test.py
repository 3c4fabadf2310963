import unittestsetup
import unittest
from configparser import RawConfigParser

from milterguard.plugins.attachment import ExtensionFilter
from milterguard.shared import Suspect, Verdict, propagate_defaults, StructuralParseError, \
    ACCEPT, DUNNO, REJECT, DEFER, actioncode_to_string
from testarchives import make_message, make_zip, nested_zip, PLAIN_MESSAGE

BROKEN_MESSAGE = (b'From: a@example.com\r\n'
                  b'MIME-Version: 1.0\r\n'
                  b'Content-Type: multipart/mixed; boundary="XX"\r\n'
                  b'\r\n'
                  b'--XX\r\n'
                  b'Content-Type: application/zip\r\n'
                  b'Content-Transfer-Encoding: base64\r\n'
                  b'Content-Disposition: attachment; filename="a.zip"\r\n'
                  b'\r\n'
                  b'Z2FyYmFnZQ==\r\n'
                  b'--XX--\r\n')


class ExtensionFilterTestCase(unittest.TestCase):

    def setUp(self):
        config = RawConfigParser()
        self.candidate = ExtensionFilter(config)
        propagate_defaults(self.candidate.requiredvars, config, self.candidate.section)
        self.config = config

    def _suspect(self, message_bytes):
        return Suspect('sender@example.com', 'recipient@example.com', message_bytes)

    def test_check_allows(self):
        verdict = self.candidate.check(make_message([('report.pdf', b'x')]).as_bytes())
        self.assertEqual(Verdict(ACCEPT), verdict)
        self.assertTrue(verdict.allowed)

    def test_check_rejects(self):
        verdict = self.candidate.check(make_message([('a.zip', make_zip([('b.exe', b'MZ')]))]).as_bytes())
        self.assertEqual(REJECT, verdict.action)
        self.assertFalse(verdict.allowed)
        self.assertEqual('552 Message blocked due to blacklisted attachment', verdict.reason)

    def test_check_depth(self):
        verdict = self.candidate.check(make_message([('a.zip', nested_zip(6, [('ok.txt', b'x')]))]).as_bytes())
        self.assertEqual(REJECT, verdict.action)

    def test_check_maxdepth_from_config(self):
        self.config.set('ExtensionFilter', 'maxdepth', '2')
        verdict = self.candidate.check(make_message([('a.zip', nested_zip(3, [('ok.txt', b'x')]))]).as_bytes())
        self.assertEqual(REJECT, verdict.action)

    def test_check_structural_error(self):
        self.assertRaises(StructuralParseError, self.candidate.check, BROKEN_MESSAGE)

    def test_check_plain(self):
        self.assertTrue(self.candidate.check(PLAIN_MESSAGE).allowed)

    def test_examine(self):
        suspect = self._suspect(make_message([('invoice.pdf.exe', b'MZ')]).as_bytes())
        result, message = self.candidate.examine(suspect)
        self.assertEqual(REJECT, result, actioncode_to_string(result))
        self.assertEqual('552 Message blocked due to blacklisted attachment', message)
        self.assertTrue(suspect.is_blocked())

        suspect = self._suspect(make_message([('invoice.pdf', b'%PDF')]).as_bytes())
        result, message = self.candidate.examine(suspect)
        self.assertEqual(DUNNO, result)
        self.assertFalse(suspect.is_blocked())

    def test_examine_problemaction(self):
        result, message = self.candidate.examine(self._suspect(BROKEN_MESSAGE))
        self.assertEqual(DEFER, result)

        self.config.set('ExtensionFilter', 'problemaction', 'DUNNO')
        result, message = self.candidate.examine(self._suspect(BROKEN_MESSAGE))
        self.assertEqual(DUNNO, result)

    def test_custom_rejectmessage(self):
        self.config.set('ExtensionFilter', 'rejectmessage', '550 no executables please')
        result, message = self.candidate.examine(self._suspect(make_message([('a.bat', b'x')]).as_bytes()))
        self.assertEqual('550 no executables please', message)

    def test_custom_denylist(self):
        self.config.set('ExtensionFilter', 'denylist', '.pdf')
        candidate = ExtensionFilter(self.config)
        self.assertFalse(candidate.check(make_message([('report.pdf', b'x')]).as_bytes()).allowed)
        self.assertTrue(candidate.check(make_message([('setup.exe', b'x')]).as_bytes()).allowed)

    def test_multipart_only(self):
        self.assertTrue(ExtensionFilter.multipart_only)

    def test_lint(self):
        self.assertTrue(self.candidate.lint())
        self.config.set('ExtensionFilter', 'maxdepth', 'five')
        self.assertFalse(self.candidate.lint())
