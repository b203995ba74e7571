# Copyright (c) 2022  plurktwister contributors
# See LICENSE.txt for details

"""
Exceptions raised by the Plurk client and the comet engine.
"""


class Error(Exception):
    """
    Base error for all plurktwister failures.
    """



class NegotiationError(Error):
    """
    The comet channel could not be negotiated.

    This indicates a broken session and is fatal: the poll loop is never
    started.
    """



class TransportError(Error):
    """
    A request failed at the network level or with a non-success status.

    @ivar url: The requested URL.
    @ivar code: The HTTP status code, or C{None} if no response was
        received.
    @ivar reason: Human readable reason.
    """

    def __init__(self, url, reason, code=None):
        Error.__init__(self, url, reason, code)
        self.url = url
        self.reason = reason
        self.code = code


    def __str__(self):
        if self.code is not None:
            return "%s: HTTP %s %s" % (self.url, self.code, self.reason)
        return "%s: %s" % (self.url, self.reason)



class WireFormatError(Error):
    """
    A comet response was not wrapped in the expected script callback.
    """



class PayloadDecodeError(Error):
    """
    The comet payload was not valid JSON or held an unrecognized event.
    """



class CredentialsError(Error):
    """
    The key file could not be read or written.
    """

# vim: set expandtab:
