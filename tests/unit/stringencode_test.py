import unittestsetup
from milterguard.stringencode import force_uString, force_bString
import unittest


class ConversionTest(unittest.TestCase):
    """Tests for string encode/decode routines from stringencode module"""

    def test_decode2unicode(self):
        """Test if strings are correctly decoded to unicode string"""
        self.assertEqual(str, type(force_uString("bla")), "After conversion, type has to be unicode")
        self.assertEqual(str, type(force_uString(b"bla")), "After conversion, type has to be unicode")

        mixedlist = ["bla", b"bla"]
        for item in force_uString(mixedlist):
            self.assertEqual(str, type(item), "After conversion, type has to be unicode")
            self.assertEqual("bla", item, "String has to match the test string \"bla\"")

    def test_encode2bytes(self):
        """Test if strings are correctly encoded"""
        self.assertEqual(bytes, type(force_bString("bla")), "After byte conversion, type has to be bytes")
        self.assertEqual(bytes, type(force_bString(b"bla")), "After byte conversion, type has to be bytes")

        mixedlist = ["bla", b"bla"]
        for item in force_bString(mixedlist):
            self.assertEqual(bytes, type(item), "After byte conversion, type has to be bytes")
            self.assertEqual(b"bla", item, "String has to match the test string b\"bla\"")

    def test_none(self):
        self.assertIsNone(force_uString(None))
        self.assertIsNone(force_bString(None))

    def test_nonstringinput(self):
        self.assertEqual("1", force_uString(1))
        for item in force_uString([int(1), "bla", b"bla"]):
            self.assertEqual(str, type(item), "After conversion, type has to be unicode")

    def test_non_utf8_input(self):
        """envelope data from the MTA is not necessarily utf-8"""
        latin = "Grüße aus Zürich".encode("latin-1")
        decoded = force_uString(latin)
        self.assertEqual(str, type(decoded))
        self.assertTrue(decoded.startswith("Gr"))
        self.assertTrue(decoded.endswith("rich"))

    def test_roundtrip_utf8(self):
        text = "Пример.zip"
        self.assertEqual(text, force_uString(force_bString(text)))
