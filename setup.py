from setuptools import setup
import glob
import sys
import os
sys.path.insert(0, 'src')

# store old content of version file here
# if we have git available, temporarily overwrite the file
# so we can report the git commit id in milterguard --version
OLD_VERSFILE_CONTENT = None
VERSFILE = 'src/milterguard/__init__.py'


def git_version():
    from milterguard import MILTERGUARD_VERSION
    global VERSFILE, OLD_VERSFILE_CONTENT
    try:
        import subprocess
        x = subprocess.Popen(
            ['git', 'describe'], stdout=subprocess.PIPE, stderr=subprocess.PIPE)
        stdout, stderr = x.communicate()
        if x.returncode == 0:
            vers = stdout.decode('utf-8').strip().lstrip('v')
            # replace milterguard version in file
            if os.path.isfile(VERSFILE):
                with open(VERSFILE, 'r') as fp:
                    OLD_VERSFILE_CONTENT = fp.read()
                buff = OLD_VERSFILE_CONTENT.replace(MILTERGUARD_VERSION, vers)
                with open(VERSFILE, 'w') as fp:
                    fp.write(buff)
            return vers
        else:
            return MILTERGUARD_VERSION
    except Exception:
        return MILTERGUARD_VERSION


setup(name="milterguard",
      version=git_version(),
      description="Milter rejecting mail with dangerous attachments",
      author="Milterguard Project",
      package_dir={'': 'src'},
      packages=['milterguard', 'milterguard.plugins',
                'milterguard.lib', 'milterguard.connectors'],
      scripts=["src/startscript/milterguard"],
      long_description="""milterguard is a sendmail/postfix milter which rejects messages carrying attachments with
dangerous file extensions, also inside (nested) zip, rar and tar archives. Optionally messages are classified with
bogofilter.""",
      data_files=[
          ('etc/milterguard', glob.glob('conf/*.dist')),
      ],
      python_requires='>=3.6',
      install_requires=[
          'rarfile>=4.0',
          'chardet',
      ],
      extras_require={
          'test': ['pytest'],
      },

      classifiers=[
          'Development Status :: 4 - Beta',
          'Environment :: No Input/Output (Daemon)',
          'Intended Audience :: System Administrators',
          'License :: OSI Approved :: Apache Software License',
          'Operating System :: POSIX',
          'Programming Language :: Python :: 3',
          'Topic :: Communications :: Email',
          'Topic :: Communications :: Email :: Filters',
          'Topic :: Communications :: Email :: Mail Transport Agents',
      ],
      )

# cleanup
if OLD_VERSFILE_CONTENT is not None:
    with open(VERSFILE, 'w') as fp:
        fp.write(OLD_VERSFILE_CONTENT)
