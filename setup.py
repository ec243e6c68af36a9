#!/usr/bin/env python
from codecs import open
import os

from setuptools import find_packages, setup

BASE_DIR = os.path.dirname(os.path.abspath(__file__))
VERSION_FILE = os.path.join(BASE_DIR, 'taxii2connect', 'version.py')


def get_version():
    with open(VERSION_FILE) as f:
        for line in f.readlines():
            if line.startswith('__version__'):
                version = line.split()[-1].strip('"')
                return version
        raise AttributeError("Package does not have a __version__")


def get_long_description():
    with open(os.path.join(BASE_DIR, 'README.rst')) as f:
        return f.read()


setup(
    name='taxii2-connect',
    version=get_version(),
    description='Asynchronous TAXII 2.0/2.1 connection client',
    long_description=get_long_description(),
    long_description_content_type='text/x-rst',
    license='BSD',
    classifiers=[
        'Development Status :: 3 - Alpha',
        'Intended Audience :: Developers',
        'Topic :: Security',
        'License :: OSI Approved :: BSD License',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3.8',
        'Programming Language :: Python :: 3.9',
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12',
    ],
    keywords='taxii taxii2 client json cti cyber threat intelligence',
    packages=find_packages(exclude=['*.test']),
    python_requires='>=3.8',
    install_requires=[
        'requests',
        'pytz',
    ],
    extras_require={
        'test': [
            'coverage',
            'pytest',
            'pytest-cov',
            'responses',
            'tox',
        ],
    },
)
