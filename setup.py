#!/usr/bin/env python
# -*- coding: utf-8 -*-
# Copyright: (c) 2024 Jordan Borean (@jborean93) <jborean93@gmail.com>
# MIT License (see LICENSE or https://opensource.org/licenses/MIT)

import os

from setuptools import setup


def abs_path(rel_path):
    return os.path.join(os.path.dirname(__file__), rel_path)


with open(abs_path('README.md'), mode='rb') as fd:
    long_description = fd.read().decode('utf-8')


setup(
    name='pswinrm',
    version='0.1.0.dev0',
    package_dir={'': 'src'},
    packages=['pswinrm', 'pswinrm._auth'],
    include_package_data=True,
    install_requires=[
        'cryptography',
        'pyspnego>=0.9.0,<1.0.0',
        'requests>=2.9.1',
    ],
    extras_require={
        'test': [
            'pytest',
            'pytest-asyncio',
            'pytest-mock',
        ],
    },
    author='Jordan Borean',
    author_email='jborean93@gmail.com',
    url='https://github.com/jborean93/pypsrp',
    description='WinRM authentication and PowerShell command execution for Python',
    long_description=long_description,
    long_description_content_type='text/markdown',
    keywords='winrm winrs windows powershell ntlm',
    license='MIT',
    python_requires='>=3.9',
    classifiers=[
        'Development Status :: 3 - Alpha',
        'License :: OSI Approved :: MIT License',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3.9',
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12',
    ],
)
