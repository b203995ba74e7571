# -*- test-case-name: plurktwister.test.test_render -*-
#
# Copyright (c) 2022  plurktwister contributors
# See LICENSE.txt for details

"""
Plain text rendering of plurks and comet content.
"""

import logging
import shutil
import sys

from twisted.internet import defer

logger = logging.getLogger('plurktwister.render')

PLURK_URL = "https://www.plurk.com/p/%s"
TIME_FORMAT = "%Y-%m-%d %H:%M:%S"

BASE36 = '0123456789abcdefghijklmnopqrstuvwxyz'


def base36encode(value):
    """
    Encode a plurk ID as used in permalinks.
    """
    result = []
    while True:
        value, i = divmod(value, 36)
        result.append(BASE36[i])
        if value == 0:
            break
    return ''.join(reversed(result))


def formatTime(dt):
    return dt.astimezone().strftime(TIME_FORMAT)


def separator():
    return '=' * shutil.get_terminal_size().columns



class ConsoleRenderer(object):
    """
    Comet consumer that writes content units as text.

    Display names of plurk owners are looked up with the API and cached.
    If the lookup fails, the owner ID is shown instead.

    @ivar api: Used to look up public profiles.
    @type api: L{plurktwister.plurk.Plurk}
    """

    def __init__(self, api, out=None):
        self.api = api
        self.out = out or sys.stdout
        self._names = {}


    def write(self, line):
        self.out.write(line + '\n')


    def displayName(self, user_id):
        """
        Return a deferred that fires with the display name of a user.
        """
        if user_id in self._names:
            return defer.succeed(self._names[user_id])

        def cb(user):
            name = self._names[user_id] = user.displayName()
            return name

        def eb(reason):
            logger.warning("Cannot look up user %s: %s", user_id,
                           reason.getErrorMessage())
            return str(user_id)

        d = self.api.getPublicProfile(user_id)
        d.addCallbacks(cb, eb)
        return d


    def onContent(self, unit):
        """
        Render a content unit.

        @raise ValueError: The unit is of an unknown type.
        """
        try:
            method = getattr(self, 'render_%s' % unit.TYPE)
        except AttributeError:
            raise ValueError("Cannot render %r" % (unit,))
        d = defer.maybeDeferred(method, unit)
        d.addCallback(lambda _: self.write(separator()))
        return d


    def render_new_plurk(self, unit):
        plurk = unit.plurk

        def cb(name):
            self.write("New plurk ==> " + PLURK_URL %
                       base36encode(plurk.plurk_id))
            self.write("%s %s %s" % (formatTime(plurk.posted), name,
                                     plurk.qualifier))
            self.write(plurk.content_raw)

        return self.displayName(plurk.owner_id).addCallback(cb)


    def render_new_response(self, unit):
        plurk = unit.plurk
        response = unit.response
        responder = unit.responder()
        if responder is not None:
            responderName = responder.displayName()
        else:
            responderName = str(response.user_id)

        def cb(name):
            self.write("New response ==> " + PLURK_URL %
                       base36encode(unit.plurk_id))
            self.write("%s %s %s" % (formatTime(plurk.posted), name,
                                     plurk.qualifier))
            self.write(plurk.content_raw)
            self.write(" -------")
            self.write("%s %s %s %s" % (formatTime(response.posted),
                                        responderName, response.qualifier,
                                        response.content_raw))

        return self.displayName(plurk.owner_id).addCallback(cb)


    def render_update_notification(self, unit):
        self.write("Notification: noti=%d req=%d" % (unit.counts.noti,
                                                     unit.counts.req))



def printTimeline(plurks, users, verbose=False, out=None):
    """
    Write a list of plurks, as returned by
    L{plurktwister.plurk.Plurk.getPlurks}.
    """
    out = out or sys.stdout
    for plurk in plurks:
        user = users.get(plurk.owner_id)
        name = user.displayName() if user else str(plurk.owner_id)
        if verbose:
            out.write("Plurk ==> %s\n" % (PLURK_URL %
                                          base36encode(plurk.plurk_id),))
            out.write("%s %s %s\n" % (formatTime(plurk.posted), name,
                                      plurk.qualifier))
            out.write(plurk.content_raw + '\n')
            out.write(separator() + '\n')
        else:
            out.write("%s %s %s %s\n" % (formatTime(plurk.posted), name,
                                         plurk.qualifier,
                                         plurk.content_raw.replace('\n',
                                                                   '   ')))

# vim: set expandtab:
