import unittestsetup
import unittest
from configparser import RawConfigParser

from milterguard.policy import ExtensionPolicy, DEFAULT_DENYLIST, file_extension


class FileExtensionTestCase(unittest.TestCase):

    def test_extension(self):
        self.assertEqual('.exe', file_extension('setup.exe'))
        self.assertEqual('.exe', file_extension('SETUP.EXE'))
        self.assertEqual('.gz', file_extension('archive.tar.gz'))
        self.assertEqual('.exe', file_extension('.exe'))
        self.assertEqual('', file_extension('README'))
        self.assertEqual('', file_extension('dir.d/README'))
        self.assertEqual('.scr', file_extension('dir.d\\payload.scr'))
        self.assertEqual('', file_extension('folder.exe/'))


class ExtensionPolicyTestCase(unittest.TestCase):

    def setUp(self):
        self.policy = ExtensionPolicy()

    def test_default_denylist(self):
        for ext in ['.asd', '.bat', '.chm', '.cmd', '.com', '.dll', '.do', '.exe', '.hlp', '.hta', '.js',
                    '.jse', '.lnk', '.ocx', '.pif', '.reg', '.scr', '.shb', '.shm', '.shs', '.vbe', '.vbs',
                    '.vbx', '.vxd', '.wsf', '.wsh', '.xl']:
            self.assertFalse(self.policy.is_allowed(ext), ext)
        self.assertEqual(27, len(DEFAULT_DENYLIST))

    def test_allowed(self):
        for ext in ['.pdf', '.txt', '.xls', '.docx', '.zip', '']:
            self.assertTrue(self.policy.is_allowed(ext), ext)

    def test_container_extensions(self):
        self.assertEqual('zip', self.policy.container_type('a.zip'))
        self.assertEqual('zip', self.policy.container_type('A.ZIP'))
        self.assertEqual('rar', self.policy.container_type('a.rar'))
        self.assertEqual('tar', self.policy.container_type('a.tar'))
        self.assertEqual('tar', self.policy.container_type('a.tar.gz'))
        self.assertEqual('tar', self.policy.container_type('a.tgz'))
        self.assertEqual('tar', self.policy.container_type('a.tar.bz2'))
        self.assertEqual('tar', self.policy.container_type('a.tar.xz'))
        self.assertIsNone(self.policy.container_type('a.gz'))
        self.assertIsNone(self.policy.container_type('a.7z'))
        self.assertIsNone(self.policy.container_type('zip'))
        self.assertTrue(self.policy.is_container_extension('archive.tar.gz'))
        self.assertFalse(self.policy.is_container_extension('archive.pdf'))

    def test_immutable(self):
        try:
            self.policy.foo = 1
            self.fail('policy must not be modified')
        except AttributeError:
            pass

    def test_custom_denylist(self):
        policy = ExtensionPolicy(denylist=['EXE', '.Docm', ' '])
        self.assertEqual(frozenset(['.exe', '.docm']), policy.denylist)
        self.assertFalse(policy.is_allowed('.docm'))
        self.assertTrue(policy.is_allowed('.scr'))

    def test_from_config(self):
        config = RawConfigParser()
        config.add_section('ExtensionFilter')
        config.set('ExtensionFilter', 'denylist', '')
        self.assertEqual(DEFAULT_DENYLIST, ExtensionPolicy.from_config(config, 'ExtensionFilter').denylist)

        config.set('ExtensionFilter', 'denylist', '.exe, .scr .js')
        self.assertEqual(frozenset(['.exe', '.scr', '.js']),
                         ExtensionPolicy.from_config(config, 'ExtensionFilter').denylist)
