# -*- test-case-name: plurktwister.test.test_credentials -*-
#
# Copyright (c) 2022  plurktwister contributors
# See LICENSE.txt for details

"""
OAuth key material, stored as a JSON key file.

The file looks like this::

    {"consumer": {"key": "...", "secret": "..."},
     "oauth_token": {"key": "...", "secret": "..."}}

where C{oauth_token} is C{null} until the user has authorized the client.
"""

import os

import simplejson as json

from plurktwister.error import CredentialsError


def defaultKeyFile():
    """
    Return the default key file location, in the user's config directory.
    """
    configDir = os.environ.get('XDG_CONFIG_HOME') or \
            os.path.join(os.path.expanduser('~'), '.config')
    return os.path.join(configDir, 'plurk-twister', 'key.json')



class Credentials(object):
    """
    Consumer key and, once authorized, access token.
    """

    def __init__(self, consumer_key, consumer_secret, token_key=None,
                 token_secret=None):
        self.consumer_key = consumer_key
        self.consumer_secret = consumer_secret
        self.token_key = token_key
        self.token_secret = token_secret


    def hasToken(self):
        return bool(self.token_key and self.token_secret)


    def toDict(self):
        token = None
        if self.hasToken():
            token = {'key': self.token_key, 'secret': self.token_secret}
        return {
            'consumer': {'key': self.consumer_key,
                         'secret': self.consumer_secret},
            'oauth_token': token,
            }


    @classmethod
    def fromDict(cls, data):
        try:
            consumer = data['consumer']
            token = data.get('oauth_token') or {}
            return cls(consumer['key'], consumer['secret'],
                       token.get('key') or None, token.get('secret') or None)
        except (AttributeError, KeyError, TypeError):
            raise CredentialsError("Invalid key data %r" % (data,))


    @classmethod
    def load(cls, path):
        """
        Read credentials from the key file at C{path}.

        @raise CredentialsError: The file cannot be read or is invalid.
        """
        try:
            with open(path) as f:
                data = json.load(f)
        except (IOError, OSError) as e:
            raise CredentialsError("Cannot read key file %s: %s" % (path, e))
        except ValueError as e:
            raise CredentialsError("Invalid key file %s: %s" % (path, e))
        return cls.fromDict(data)


    def save(self, path):
        """
        Write the credentials to C{path}, creating its directory if needed.

        The file is only readable by the user.
        """
        directory = os.path.dirname(path)
        try:
            if directory:
                os.makedirs(directory, exist_ok=True)
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, 'w') as f:
                json.dump(self.toDict(), f, indent=2, sort_keys=True)
        except (IOError, OSError) as e:
            raise CredentialsError("Cannot write key file %s: %s" % (path, e))

# vim: set expandtab:
