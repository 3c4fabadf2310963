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

import chardet


def try_encoding(u_inputstring, encoding="utf-8"):
    """Try to encode a unicode string

    Args:
        u_inputstring (str):
        encoding (str): target encoding type

    Returns:
        byte-string
    """
    if u_inputstring is None:
        return None

    logger = logging.getLogger("milterguard.stringencode.try_encoding")
    try:
        return u_inputstring.encode(encoding, "strict")
    except UnicodeEncodeError as e:
        logger.error("Encoding error!")
        logger.exception(e)
        raise e


def try_decoding(b_inputstring, encodingGuess="utf-8"):
    """ Try to decode an encoded string

    Args:
        b_inputstring (bytes): input byte string
    Keyword Args:
        encodingGuess (str): guess for encoding used, default assume unicode

    Returns:
        unicode string

    """
    if b_inputstring is None:
        return None

    logger = logging.getLogger("milterguard.stringencode.try_decoding")
    try:
        u_outputstring = b_inputstring.decode(encodingGuess, "strict")
    except (UnicodeDecodeError, LookupError):
        logger.warning("found non %s encoding or encoding not found, try to detect encoding" % encodingGuess)
        encoding = chardet.detect(b_inputstring)['encoding']
        logger.warning("encoding estimated as %s" % encoding)
        if encoding is None:
            # nothing sensible detected, keep every byte
            return b_inputstring.decode("latin-1")
        u_outputstring = b_inputstring.decode(encoding, "replace")
    return u_outputstring


def force_uString(inputstring, encodingGuess="utf-8"):
    """Try to enforce a unicode string

    Args:
        inputstring (str, bytes, list): input string or list of strings to be checked
    Keyword Args:
        encodingGuess (str): guess for encoding used, default assume unicode

    Returns: unicode string (or list with unicode strings)

    """
    if inputstring is None:
        return None
    elif isinstance(inputstring, list):
        return [force_uString(item, encodingGuess) for item in inputstring]

    if isinstance(inputstring, str):
        return inputstring
    elif isinstance(inputstring, bytes):
        return try_decoding(inputstring, encodingGuess)
    return str(inputstring)


def force_bString(inputstring, encoding="utf-8"):
    """Try to enforce a string of bytes

    Args:
        inputstring (str, bytes, list): string or list of strings
        encoding (str): encoding type in case of encoding needed

    Returns: encoded byte string (or list with endcoded strings)

    """
    if inputstring is None:
        return None
    elif isinstance(inputstring, list):
        return [force_bString(item, encoding) for item in inputstring]

    if not isinstance(inputstring, str):
        return inputstring
    return try_encoding(inputstring, encoding)
