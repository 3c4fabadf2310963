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
# How to use this file:
# For normal use, just import the class "Archivehandle". Check class description
# for more information how to use the class.

import io
import logging
import tarfile
import zipfile
import zlib
from collections import namedtuple

import rarfile

from milterguard.shared import ContainerError, RecoverableEntryError

# one record inside an archive. 'member' is the library specific info object
# (ZipInfo, RarInfo, TarInfo) and identifies the entry even if an archive
# contains the same name twice
ArchiveEntry = namedtuple('ArchiveEntry', ['name', 'member'])


#-------------#
#- Interface -#
#-------------#
class Archive_int(object):
    """
    Archive_int is the interface for the archive handle implementations
    """

    archive_type = None

    def __init__(self, payload):
        self._handle = None
        self._logger = logging.getLogger('milterguard.archives.%s' % self.__class__.__name__)

    def close(self):
        try:
            self._handle.close()
        except AttributeError:
            pass

    def entries(self):
        """ Iterate over the archive entries in archive order

        Returns:
            (generator) yields ArchiveEntry tuples

        Raises:
            ContainerError: the archive directory structure is corrupt
        """
        return iter([])

    def namelist(self):
        """ Get archive file list

        Returns:
            (list) Returns a list of file paths within the archive
        """
        return [entry.name for entry in self.entries()]

    def filesize(self, member):
        """get extracted file size

        Args:
            member (ArchiveEntry, info object or str): entry as returned by entries or its name
        Raises:
            NotImplementedError because this routine has to be implemented by classes deriving
        """
        raise NotImplementedError

    def extract(self, member, archivecontentmaxsize):
        """extract a file from the archive into memory

        Args:
            member (ArchiveEntry, info object or str): entry as returned by entries or its name
            archivecontentmaxsize (int): maximum file size allowed to be extracted from archive
        Returns:
            (bytes or None) returns the file content or None if the file would be larger than archivecontentmaxsize
        Raises:
            RecoverableEntryError: this entry could not be read
        """
        return None

    @staticmethod
    def _member(member):
        if isinstance(member, ArchiveEntry):
            return member.member
        return member

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()


#---------------------------#
#- Archive implementations -#
#---------------------------#
# Don't forget to add new implementations to the dict "archive_impl"
# in class Archivehandle

class Archive_zip(Archive_int):
    """zip archives, names come from the central directory"""

    archive_type = 'zip'

    def __init__(self, payload):
        super(Archive_zip, self).__init__(payload)
        try:
            self._handle = zipfile.ZipFile(io.BytesIO(payload))
        except (zipfile.BadZipfile, zipfile.LargeZipFile, EOFError, OSError, ValueError) as e:
            raise ContainerError('invalid zip archive: %s' % e)

    def entries(self):
        for info in self._handle.infolist():
            yield ArchiveEntry(info.filename, info)

    def filesize(self, member):
        member = self._member(member)
        if not isinstance(member, zipfile.ZipInfo):
            member = self._handle.getinfo(member)
        return member.file_size

    def extract(self, member, archivecontentmaxsize):
        member = self._member(member)
        try:
            if archivecontentmaxsize is not None and self.filesize(member) > archivecontentmaxsize:
                return None
            return self._handle.read(member)
        except (zipfile.BadZipfile, RuntimeError, NotImplementedError, EOFError, OSError, KeyError, zlib.error) as e:
            # RuntimeError: encrypted entry, NotImplementedError: unknown compression
            raise RecoverableEntryError('could not extract %s from zip: %s' % (member, e))


class Archive_rar(Archive_int):
    """rar archives, names come from the file block headers"""

    archive_type = 'rar'

    def __init__(self, payload):
        super(Archive_rar, self).__init__(payload)
        try:
            self._handle = rarfile.RarFile(io.BytesIO(payload), errors='strict')
        except (rarfile.Error, EOFError, OSError) as e:
            raise ContainerError('invalid rar archive: %s' % e)

    def entries(self):
        for info in self._handle.infolist():
            yield ArchiveEntry(info.filename, info)

    def filesize(self, member):
        member = self._member(member)
        if not isinstance(member, rarfile.RarInfo):
            member = self._handle.getinfo(member)
        return member.file_size

    def extract(self, member, archivecontentmaxsize):
        member = self._member(member)
        try:
            if archivecontentmaxsize is not None and self.filesize(member) > archivecontentmaxsize:
                return None
            # stored entries are read directly, compressed ones need the unrar tool
            return self._handle.read(member)
        except (rarfile.Error, EOFError, OSError, KeyError) as e:
            raise RecoverableEntryError('could not extract %s from rar: %s' % (member, e))


class Archive_tar(Archive_int):
    """
    tar archives, plain or gzip/bzip2/xz compressed. Headers are read one by
    one, the content of each member is skipped to reach the next header.
    """

    archive_type = 'tar'

    def __init__(self, payload):
        super(Archive_tar, self).__init__(payload)
        try:
            self._handle = tarfile.open(fileobj=io.BytesIO(payload), mode='r:*')
        except (tarfile.TarError, EOFError, OSError, zlib.error) as e:
            raise ContainerError('invalid tar archive: %s' % e)

    def entries(self):
        iterator = iter(self._handle)
        while True:
            try:
                tarinfo = next(iterator)
            except StopIteration:
                return
            except (tarfile.TarError, EOFError, OSError, zlib.error) as e:
                raise ContainerError('corrupt tar archive: %s' % e)
            yield ArchiveEntry(tarinfo.name, tarinfo)

    def filesize(self, member):
        member = self._member(member)
        if not isinstance(member, tarfile.TarInfo):
            member = self._handle.getmember(member)
        return member.size

    def extract(self, member, archivecontentmaxsize):
        member = self._member(member)
        try:
            if not isinstance(member, tarfile.TarInfo):
                member = self._handle.getmember(member)
            if not member.isfile():
                raise RecoverableEntryError('%s is not a regular file' % member.name)
            if archivecontentmaxsize is not None and member.size > archivecontentmaxsize:
                return None
            x = self._handle.extractfile(member)
            extracted = x.read()
            x.close()
            return extracted
        except (tarfile.TarError, EOFError, OSError, KeyError, zlib.error) as e:
            raise RecoverableEntryError('could not extract %s from tar: %s' % (member, e))


#--------------------------------------------------------------------------#
#- The pubic available factory class to produce the archive handler class -#
#--------------------------------------------------------------------------#
class Archivehandle(object):
    """
    Archivehandle is the factory for the archive handle implementations.

    Example:
        handle = Archivehandle('zip', payload)    # get a handle
        for entry in handle.entries():           # walk the files contained in archive
            print(entry.name)
        content = handle.extract(entry, 500000)   # extract last file if smaller than 0.5 MB
        handle.close()
    """

    # Dict mapping implementations to archive type string
    archive_impl = {"zip": Archive_zip,
                    "rar": Archive_rar,
                    "tar": Archive_tar}

    @staticmethod
    def impl(archive_type):
        """
        Checks if archive type is implemented
        Args:
            archive_type (Str): Archive type to be checked, for example ('zip','rar','tar')

        Returns:
            True if there is an implementation

        """
        return archive_type in Archivehandle.archive_impl

    def __new__(cls, archive_type, payload):
        """
        Factory method that will produce and return the correct implementation depending
        on the archive type

        Args:
            archive_type (str): archive type ('zip','rar','tar')
            payload (bytes): the complete archive in memory

        Raises:
            ValueError: unknown archive type
            ContainerError: payload is not a valid archive of this type
        """
        if not Archivehandle.impl(archive_type):
            raise ValueError("Archive type %s not in list of supported types: %s"
                             % (archive_type, ",".join(sorted(Archivehandle.archive_impl.keys()))))

        return Archivehandle.archive_impl[archive_type](payload)
