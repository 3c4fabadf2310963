"""
Build archives and messages in memory for the unit tests.
"""
import io
import struct
import tarfile
import zipfile
import zlib
from email.mime.application import MIMEApplication
from email.mime.message import MIMEMessage
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText


def make_zip(entries):
    """entries: list of (name, bytes)"""
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, 'w', zipfile.ZIP_DEFLATED) as zf:
        for name, data in entries:
            zf.writestr(name, data)
    return buf.getvalue()


def mark_zip_entry_encrypted(payload, name):
    """set the 'encrypted' flag of one entry in local and central headers"""
    data = bytearray(payload)
    bname = name.encode('utf-8')

    pos = data.find(b'PK\x01\x02')
    while pos >= 0:
        namelen = struct.unpack('<H', bytes(data[pos + 28:pos + 30]))[0]
        if bytes(data[pos + 46:pos + 46 + namelen]) == bname:
            data[pos + 8] |= 0x01
            localoffset = struct.unpack('<L', bytes(data[pos + 42:pos + 46]))[0]
            data[localoffset + 6] |= 0x01
        pos = data.find(b'PK\x01\x02', pos + 4)
    return bytes(data)


def make_tar(entries, mode='w'):
    """entries: list of (name, bytes), mode 'w', 'w:gz', 'w:bz2' or 'w:xz'"""
    buf = io.BytesIO()
    tf = tarfile.open(fileobj=buf, mode=mode)
    for name, data in entries:
        info = tarfile.TarInfo(name)
        info.size = len(data)
        tf.addfile(info, io.BytesIO(data))
    tf.close()
    return buf.getvalue()


RAR_MARKER = b'Rar!\x1a\x07\x00'
# 2018-01-01 00:00:00 as dos date/time
RAR_DOSTIME = (((2018 - 1980) << 9) | (1 << 5) | 1) << 16


def _rar_block(head_type, flags, body):
    data = struct.pack('<BHH', head_type, flags, 7 + len(body)) + body
    crc = zlib.crc32(data) & 0xFFFF
    return struct.pack('<H', crc) + data


def make_rar(entries):
    """
    RAR 2.9 (rar4) archive with stored (uncompressed) entries, these can be
    read without the unrar tool. entries: list of (name, bytes)
    """
    out = [RAR_MARKER, _rar_block(0x73, 0, b'\0' * 6)]
    for name, data in entries:
        bname = name.encode('ascii')
        header = struct.pack('<LLBLLBBHL', len(data), len(data), 2, zlib.crc32(data) & 0xFFFFFFFF,
                             RAR_DOSTIME, 29, 0x30, len(bname), 0x20) + bname
        out.append(_rar_block(0x74, 0x8000, header))
        out.append(data)
    out.append(_rar_block(0x7b, 0x4000, b''))
    return b''.join(out)


def nested_zip(levels, innermost):
    """
    zip archives nested into each other. the returned archive is level 1,
    the one at level <levels> contains the innermost entries.
    """
    payload = make_zip(innermost)
    for level in range(levels, 1, -1):
        payload = make_zip([('level%s.zip' % level, payload)])
    return payload


def make_message(attachments, text='Hello', subject='test'):
    """multipart message, attachments: list of (filename, bytes)"""
    msg = MIMEMultipart()
    msg['From'] = 'sender@example.com'
    msg['To'] = 'recipient@example.com'
    msg['Subject'] = subject
    msg.attach(MIMEText(text))
    for filename, data in attachments:
        part = MIMEApplication(data)
        part.add_header('Content-Disposition', 'attachment', filename=filename)
        msg.attach(part)
    return msg


def wrap_message(inner):
    """multipart message carrying inner as message/rfc822 part"""
    msg = MIMEMultipart()
    msg['From'] = 'forwarder@example.com'
    msg['To'] = 'recipient@example.com'
    msg['Subject'] = 'Fwd: test'
    msg.attach(MIMEText('see attached mail'))
    msg.attach(MIMEMessage(inner))
    return msg


PLAIN_MESSAGE = b"""From: sender@example.com\r
To: recipient@example.com\r
Subject: plain\r
Content-Type: text/plain\r
\r
just text, no attachments\r
"""
