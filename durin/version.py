"""Durin Meta information.
   Durin keeps named credentials in a local, password-protected store.
"""
__title__ = 'durin'
__description__ = (
   'Durin keeps named credentials in a local store encrypted '
   'under a password-derived key.'
)
__version__ = '0.1.0'
__copyright__ = 'Copyright (c) 2023 Jesus Lara'
__author__ = 'Jesus Lara'
__author_email__ = 'jesuslarag@gmail.com'
__license__ = 'Apache-2.0'
__url__ = 'https://github.com/phenobarbital/durin'
