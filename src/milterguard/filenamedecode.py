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
# Attachment filenames are often sent as RFC 2047 encoded words, eg.
# =?koi8-r?B?8NLJzcXS?=.exe
# The name has to be decoded before its extension can be compared to the
# denylist, otherwise the real extension could be hidden inside the encoding.
#
import base64
import binascii
import logging
import re
from email.errors import HeaderParseError
from email.header import decode_header

from milterguard.shared import FilenameDecodeError

# key: charset as named in the encoded word (lower case), value: python codec
SUPPORTED_CHARSETS = {
    'koi8-r': 'koi8_r',
    'windows-1251': 'cp1251',
    'utf-8': 'utf_8',
    'us-ascii': 'ascii',
    'iso-8859-1': 'latin_1',
    'utf-16': 'utf_16',
}

ENCODED_WORD_RE = re.compile(r'^=\?(?P<charset>[^?]*)\?(?P<encoding>[^?]*)\?(?P<text>[^?]*)\?=$')

# printable ascii except '=', '?' and space, or a =XX escape
Q_TEXT_RE = re.compile(r'^(?:[\x21-\x3c\x3e\x40-\x7e]|=[0-9A-Fa-f]{2})*$')

# header continuation lines
FOLDING_RE = re.compile(r'\r?\n[ \t]+')

logger = logging.getLogger('milterguard.filenamedecode')


def is_encoded_word(word):
    """True if the word looks like =?<charset>?<encoding>?<text>?="""
    return word.startswith('=?') and word.endswith('?=') and word.count('?') == 4


def _check_syntax(word, encoding, text):
    """decode_header skips over bad escapes and base64 garbage, reject those first"""
    if encoding in ('B', 'b'):
        try:
            base64.b64decode(text, validate=True)
        except (binascii.Error, ValueError) as e:
            raise FilenameDecodeError('invalid base64 in encoded word %s: %s' % (word, e))
    elif encoding in ('Q', 'q'):
        if Q_TEXT_RE.match(text) is None:
            raise FilenameDecodeError('invalid Q encoding in encoded word %s' % word)
    else:
        raise FilenameDecodeError('invalid encoding "%s" in encoded word %s' % (encoding, word))


def decode_word(word):
    """
    Decode a single word. Plain words are returned unchanged.

    Args:
        word (str): plain word or encoded word

    Returns:
        (str) decoded word

    Raises:
        FilenameDecodeError: malformed encoded word or unsupported charset
    """
    if not is_encoded_word(word):
        return word

    m = ENCODED_WORD_RE.match(word)
    if m is None:
        raise FilenameDecodeError('invalid encoded word %s' % word)

    # RFC 2231 allows a language suffix: =?utf-8*en?...
    charset = m.group('charset').split('*', 1)[0].lower()

    if charset == '':
        raise FilenameDecodeError('missing charset in encoded word %s' % word)
    if charset not in SUPPORTED_CHARSETS:
        raise FilenameDecodeError('unhandled charset "%s"' % charset)

    _check_syntax(word, m.group('encoding'), m.group('text'))

    try:
        raw = b''.join([x[0] for x in decode_header(word)])
    except HeaderParseError as e:
        raise FilenameDecodeError('could not decode %s: %s' % (word, e))

    try:
        return raw.decode(SUPPORTED_CHARSETS[charset], 'strict')
    except UnicodeDecodeError as e:
        raise FilenameDecodeError('encoded word %s is not valid %s: %s' % (word, charset, e))


def decode_filename(text):
    """
    Unfold the header value, split it into space separated words, decode
    every word and join the results without separator (adjacent encoded
    words are folded together).

    Args:
        text (str): raw filename as found in the mime headers

    Returns:
        (str) decoded filename

    Raises:
        FilenameDecodeError
    """
    unfolded = FOLDING_RE.sub(' ', text)
    words = unfolded.split(' ')
    decoded = ''.join([decode_word(word) for word in words])
    if decoded != text:
        logger.debug('decoded filename %r -> %s' % (text, decoded))
    return decoded
