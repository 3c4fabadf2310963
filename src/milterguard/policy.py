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
import re

# extensions of executables, scripts, shortcuts, registry files and
# macro-bearing legacy office documents
DEFAULT_DENYLIST = frozenset([
    ".asd", ".bat", ".chm", ".cmd", ".com", ".dll", ".do", ".exe", ".hlp",
    ".hta", ".js", ".jse", ".lnk", ".ocx", ".pif", ".reg", ".scr", ".shb",
    ".shm", ".shs", ".vbe", ".vbs", ".vbx", ".vxd", ".wsf", ".wsh", ".xl",
])

# key: file ending, value: archive type
DEFAULT_CONTAINER_EXTENSIONS = {
    'zip': 'zip',
    'rar': 'rar',
    'tar': 'tar',
    'tar.gz': 'tar',
    'tgz': 'tar',
    'tar.bz2': 'tar',
    'tbz2': 'tar',
    'tar.xz': 'tar',
    'txz': 'tar',
}


def file_extension(name):
    """
    Lower-cased extension (including the dot) of the last path element,
    empty string if there is none.

    >>> file_extension('dir.d/Payload.EXE')
    '.exe'
    >>> file_extension('README')
    ''
    """
    basename = re.split(r'[/\\]', name)[-1]
    pos = basename.rfind('.')
    if pos < 0:
        return ''
    return basename[pos:].lower()


class ExtensionPolicy(object):
    """
    Immutable table of denied file extensions and of the archive types whose
    content has to be inspected. One instance is shared by all concurrent
    inspections.
    """

    __slots__ = ('_denylist', '_container_extensions', '_sorted_container_extensions')

    def __init__(self, denylist=None, container_extensions=None):
        if denylist is None:
            denylist = DEFAULT_DENYLIST
        if container_extensions is None:
            container_extensions = DEFAULT_CONTAINER_EXTENSIONS

        denied = set()
        for ext in denylist:
            ext = ext.strip().lower()
            if ext == '':
                continue
            if not ext.startswith('.'):
                ext = '.' + ext
            denied.add(ext)

        object.__setattr__(self, '_denylist', frozenset(denied))
        object.__setattr__(self, '_container_extensions', dict(container_extensions))
        # sort by length, so tar.gz is checked before .gz
        object.__setattr__(self, '_sorted_container_extensions',
                           tuple(sorted(container_extensions.keys(), key=lambda x: len(x), reverse=True)))

    def __setattr__(self, name, value):
        raise AttributeError('ExtensionPolicy is immutable')

    @classmethod
    def from_config(cls, config, section):
        """
        Build the policy from the 'denylist' option of a config section,
        the default denylist is used if the option is empty.
        """
        denylist = None
        if config.has_option(section, 'denylist'):
            value = config.get(section, 'denylist').strip()
            if value != '':
                denylist = re.split(r'[\s,]+', value)
        return cls(denylist=denylist)

    @property
    def denylist(self):
        return self._denylist

    def is_allowed(self, extension):
        """
        Args:
            extension (str): lower-cased, dot-prefixed suffix, eg. '.exe'

        Returns:
            (bool) False if the extension is on the denylist
        """
        return extension not in self._denylist

    def container_type(self, name):
        """
        Archive type for a file name, None if the name does not denote an
        archive we can look into.
        """
        if name is None:
            return None
        lowername = name.lower()
        for arext in self._sorted_container_extensions:
            if lowername.endswith('.%s' % arext):
                return self._container_extensions[arext]
        return None

    def is_container_extension(self, name):
        """True if the (full) file name ends with a container suffix"""
        return self.container_type(name) is not None

    def __repr__(self):
        return '<ExtensionPolicy denylist=%s containers=%s>' % (
            ','.join(sorted(self._denylist)), ','.join(self._sorted_container_extensions))
