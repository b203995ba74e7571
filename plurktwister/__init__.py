# Copyright (c) 2022  plurktwister contributors
# See LICENSE.txt for details

"""
Plurk client for Twisted Python.
"""

__version__ = '0.1'
