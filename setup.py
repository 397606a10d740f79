#! /usr/bin/env python
# SPDX-License-Identifier: GPL-2.0-or-later

from setuptools import setup, find_packages

setup(
    name='MatchDirector',
    version='1.0',
    description='Director loop dispatching matchmaking assignments',
    packages=find_packages(),
    python_requires='>=3.8',
    install_requires=[
        'aiohttp>=3.8',
        'prometheus_client',
        'PyYAML',
        'redis>=5.0.1',
        'protobuf>=4.21',
        'tenacity>=8.0,<8.4',
    ],
    extras_require={
        'test': ['pytest', 'pytest-aiohttp>=1.0', 'pytest-mock'],
    },
    zip_safe=False,
)
