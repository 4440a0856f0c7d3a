# Copyright (c) 2017-2019 Uber Technologies, Inc.
# SPDX-License-Identifier: Apache-2.0

import os
import subprocess
import sys

from setuptools import find_packages, setup

PROJECT_PATH = os.path.dirname(os.path.abspath(__file__))
VERSION = """
# This file is auto-generated with the version information during setup.py installation.

__version__ = '{}'
"""

# Find batchvi version.
for line in open(os.path.join(PROJECT_PATH, 'batchvi', '__init__.py')):
    if line.startswith('version_prefix = '):
        version = line.strip().split()[2][1:-1]

# Append current commit sha to version
commit_sha = ''
try:
    current_tag = subprocess.check_output(['git', 'tag', '--points-at', 'HEAD'],
                                          cwd=PROJECT_PATH, stderr=subprocess.DEVNULL).decode('ascii').strip()
    # only add sha if HEAD does not point to the release tag
    if not current_tag == version:
        commit_sha = subprocess.check_output(['git', 'rev-parse', '--short', 'HEAD'],
                                             cwd=PROJECT_PATH, stderr=subprocess.DEVNULL).decode('ascii').strip()
# catch all exception to be safe
except Exception:
    pass  # probably not a git repo

# Write version to _version.py
if commit_sha:
    version += '+{}'.format(commit_sha)
with open(os.path.join(PROJECT_PATH, 'batchvi', '_version.py'), 'w') as f:
    f.write(VERSION.format(version))

try:
    long_description = open('README.md', encoding='utf-8').read()
except Exception as e:
    sys.stderr.write('Failed to read README.md: {}\n'.format(e))
    sys.stderr.flush()
    long_description = ''

setup(
    name='batchvi',
    version=version,
    description='Minibatch-scaled variational inference for models with global and local latent variables',
    long_description=long_description,
    long_description_content_type='text/markdown',
    packages=find_packages(include=['batchvi', 'batchvi.*']),
    install_requires=[
        # numpy is necessary for some functionality of PyTorch
        'numpy>=1.7',
        'torch>=1.12.0',
        'tqdm>=4.36',
    ],
    extras_require={
        'test': [
            'pytest>=5.0',
            'pytest-cov',
        ],
        'dev': [
            'flake8',
            'isort',
            'pytest>=5.0',
            'pytest-cov',
        ],
    },
    python_requires='>=3.8',
    keywords='machine learning statistics variational inference subsampling pytorch',
    license='Apache 2.0',
    classifiers=[
        'Intended Audience :: Developers',
        'Intended Audience :: Science/Research',
        'License :: OSI Approved :: Apache Software License',
        'Operating System :: POSIX :: Linux',
        'Operating System :: MacOS :: MacOS X',
        'Programming Language :: Python :: 3',
    ],
)
