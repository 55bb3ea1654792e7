#!/usr/bin/env python3

from setuptools import setup, find_packages
import os


def read_readme():
    if os.path.exists('README.md'):
        with open('README.md', 'r', encoding='utf-8') as f:
            return f.read()
    return "DNS-over-HTTPS Forwarding Proxy"


def read_requirements():
    if os.path.exists('requirements.txt'):
        with open('requirements.txt', 'r') as f:
            return [line.strip() for line in f if line.strip() and not line.startswith('#')]
    return [
        'twisted>=22.10.0',
        'pyopenssl>=22.0.0',
        'service-identity>=21.1.0',
        'idna>=3.4',
        'prometheus-client>=0.16.0',
    ]


setup(
    name='doh-proxy',
    version='1.0.0',
    description='DNS-over-HTTPS forwarding proxy with weighted upstream selection and failover',
    long_description=read_readme(),
    long_description_content_type='text/markdown',
    author='DoH Proxy Team',
    author_email='admin@example.com',
    url='https://github.com/example/doh-proxy',

    packages=find_packages(include=['doh_proxy', 'doh_proxy.*']),
    include_package_data=True,

    install_requires=read_requirements(),
    extras_require={
        'test': ['pytest>=7.0'],
    },

    entry_points={
        'console_scripts': [
            'doh-proxy=doh_proxy.main:main',
        ],
    },

    classifiers=[
        'Development Status :: 5 - Production/Stable',
        'Environment :: No Input/Output (Daemon)',
        'Framework :: Twisted',
        'Intended Audience :: System Administrators',
        'License :: OSI Approved :: MIT License',
        'Operating System :: POSIX :: Linux',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3.9',
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12',
        'Topic :: Internet :: Name Service (DNS)',
        'Topic :: Internet :: Proxy Servers',
    ],

    python_requires='>=3.9',
)
