#!/usr/bin/env python

# Copyright the TUF contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""
<Program Name>
  setup.py

<Purpose>
  BUILD SOURCE DISTRIBUTION

  The following shell command generates a tufclient source archive that can
  be distributed to other users.  The packaged source is saved to the 'dist'
  folder in the current directory.

  $ python -m build --sdist


  INSTALLATION OPTIONS

  # Installing from local source archive.
  $ pip install <path to archive>

  # Or from the root directory of the unpacked archive.
  $ pip install .

  # Editable install for development.
  $ pip install -e .

  # Run the tests from the root directory.
  $ python tests/aggregate_tests.py

  Ed25519, RSA and ECDSA signature verification is provided by the 'crypto'
  extra of securesystemslib, which is always installed.
"""

from setuptools import setup
from setuptools import find_packages


with open('README.md') as file_object:
  long_description = file_object.read()


setup(
  name = 'tufclient',
  version = '1.0.0', # If updating version, also update it in tufclient/__init__.py
  description = 'A client for securely updating from TUF repositories',
  long_description = long_description,
  long_description_content_type='text/markdown',
  author = 'https://www.updateframework.com',
  author_email = 'theupdateframework@googlegroups.com',
  url = 'https://www.updateframework.com',
  keywords = 'update updater secure authentication key compromise revocation',
  classifiers = [
    'Development Status :: 4 - Beta',
    'Intended Audience :: Developers',
    'License :: OSI Approved :: MIT License',
    'License :: OSI Approved :: Apache Software License',
    'Natural Language :: English',
    'Operating System :: POSIX',
    'Operating System :: POSIX :: Linux',
    'Operating System :: MacOS :: MacOS X',
    'Operating System :: Microsoft :: Windows',
    'Programming Language :: Python',
    'Programming Language :: Python :: 3',
    'Programming Language :: Python :: 3 :: Only',
    'Programming Language :: Python :: Implementation :: CPython',
    'Topic :: Security',
    'Topic :: Software Development'
  ],
  python_requires=">=3.8",
  install_requires = [
    'requests>=2.19.1',
    'urllib3>=2.2',
    'securesystemslib[crypto]>=0.31.0,<2'
  ],
  packages = find_packages(exclude=['tests', 'tests.*'])
)
