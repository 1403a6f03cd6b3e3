#!/usr/bin/env python
from setuptools import setup, find_packages

with open("README.md", "r") as fh:
    long_description = fh.read()

setup(
    name='django-ldapentry',
    version='0.9.0',
    description='Change-tracking LDAP entries that sync to the directory in one batch',
    long_description=long_description,
    long_description_content_type="text/markdown",
    keywords=['django', 'ldap', 'ldif'],
    author="Caltech IMSS ADS",
    author_email="imss-ads-staff@caltech.edu",
    packages=find_packages(exclude=['bin', 'doc']),
    include_package_data=True,
    python_requires='>=3.10',
    install_requires=[
        'django',
        'ldap_filter',
        'python-ldap',
    ],
    extras_require={
        'test': [
            'pytest',
            'python-ldap-faker',
        ],
        'docs': [
            'sphinx',
            'sphinx_rtd_theme',
        ],
    },
    classifiers=[
        "Programming Language :: Python :: 3"
    ],
)
