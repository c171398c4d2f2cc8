#!/usr/bin/python
# -*- encoding: utf-8 -*-
# Copyright (c) 2010 OpenStack, LLC.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#    http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or
# implied.
# See the License for the specific language governing permissions and
# limitations under the License.

import os
import setuptools

name = 'objstor'


def read(fname):
    with open(os.path.join(os.path.dirname(__file__), fname)) as fp:
        return fp.read()


def parse_requirements(fname):
    return [line.strip() for line in read(fname).splitlines()
            if line.strip() and not line.startswith('#')]


def get_version():
    version = {}
    exec(read(os.path.join('objstor', 'version.py')), version)
    return version['version_string']


setuptools.setup(
    name=name,
    version=get_version(),
    description='Command line client for OpenStack Swift compatible object '
                'storage',
    long_description=read('README.rst'),
    license='Apache License (2.0)',
    packages=setuptools.find_packages(exclude=['test', 'test.*']),
    install_requires=parse_requirements('requirements.txt'),
    extras_require={'test': parse_requirements('test-requirements.txt')},
    python_requires='>=3.7',
    classifiers=[
        'Development Status :: 4 - Beta',
        'Environment :: Console',
        'Intended Audience :: Developers',
        'Intended Audience :: Information Technology',
        'License :: OSI Approved :: Apache Software License',
        'Operating System :: OS Independent',
        'Programming Language :: Python :: 3',
    ],
    scripts=[
        'bin/objstor',
    ],
)
