# -*- test-case-name: plurktwister.test.test_comet -*-
#
# Copyright (c) 2022  plurktwister contributors
# See LICENSE.txt for details

"""
Plurk realtime (comet) wire format.

Long-poll responses are not plain JSON. The server wraps the payload in a
script callback, C{CometChannel.scriptCallback(<json>);}, and the JSON holds
the next offset and a list of events tagged by a C{type} key. This module
strips the wrapper, decodes the events into content units and keeps the
channel bookkeeping.

@see: U{https://www.plurk.com/API#realtime}.
"""

from email.utils import parsedate_to_datetime
from urllib.parse import parse_qs, urljoin, urlsplit

import simplejson as json

from twisted.python import log

from plurktwister.error import NegotiationError, PayloadDecodeError
from plurktwister.error import WireFormatError

# The server controls this text and there is no negotiated version. Any
# change on its side breaks parsing.
FRAME_PREFIX = 'CometChannel.scriptCallback('
FRAME_SUFFIX = ');'


def _isInteger(value):
    return isinstance(value, int) and not isinstance(value, bool)


def parsePosted(value):
    """
    Parse an RFC 2822 timestamp, as used by the Plurk API, to a datetime.
    """
    if not isinstance(value, str):
        raise PayloadDecodeError("Invalid timestamp %r" % (value,))
    try:
        result = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        result = None
    if result is None:
        raise PayloadDecodeError("Invalid timestamp %r" % (value,))
    return result



class PlurkObject(object):
    """
    A Plurk API object.

    Known simple properties are copied from the wire dictionary, complex
    properties are converted with their own class. Missing required
    properties and non-integer identifiers raise L{PayloadDecodeError}.

    @cvar REQUIRED_PROPS: Properties that must be present and not null.
    @cvar INTEGER_PROPS: Properties that must hold an integer, if present.
    @cvar DATE_PROPS: Properties holding RFC 2822 timestamps.
    """
    raw = None
    SIMPLE_PROPS = None
    COMPLEX_PROPS = None
    REQUIRED_PROPS = ()
    INTEGER_PROPS = ()
    DATE_PROPS = ()

    @classmethod
    def fromDict(cls, data):
        """
        Fill this objects attributes from a dict for known properties.
        """
        if not isinstance(data, dict):
            raise PayloadDecodeError("Expected an object for %s, got %r" %
                                     (cls.__name__, data))
        for name in cls.REQUIRED_PROPS:
            if data.get(name) is None:
                raise PayloadDecodeError("Missing %r in %s" %
                                         (name, cls.__name__))

        obj = cls()
        obj.raw = data
        for name, value in data.items():
            if name in cls.INTEGER_PROPS and not _isInteger(value):
                raise PayloadDecodeError("Expected an integer for %r in %s, "
                                         "got %r" % (name, cls.__name__,
                                                     value))
            if cls.SIMPLE_PROPS and name in cls.SIMPLE_PROPS:
                if name in cls.DATE_PROPS and value is not None:
                    value = parsePosted(value)
                setattr(obj, name, value)
            elif cls.COMPLEX_PROPS and name in cls.COMPLEX_PROPS:
                value = cls.COMPLEX_PROPS[name].fromDict(value)
                setattr(obj, name, value)

        return obj


    def __repr__(self):
        bodyParts = []
        for name in sorted(self.SIMPLE_PROPS or ()):
            if name in self.__dict__:
                bodyParts.append("%s=%r" % (name, getattr(self, name)))
        return "%s(%s)" % (self.__class__.__name__, ', '.join(bodyParts))



class User(PlurkObject):
    """
    Plurk user, as far as needed for display.
    """
    id = None
    nick_name = None
    display_name = None
    full_name = None

    SIMPLE_PROPS = set(['id', 'nick_name', 'display_name', 'full_name',
        'avatar', 'karma', 'premium', 'verified_account', 'gender', 'status',
        'default_lang', 'timeline_privacy', 'has_profile_image',
        'date_of_birth', 'name_color'])
    INTEGER_PROPS = ('id',)

    def displayName(self):
        """
        Return the best available name for this user.
        """
        return self.display_name or self.nick_name or str(self.id)



class PlurkData(PlurkObject):
    """
    Snapshot of a plurk.
    """
    SIMPLE_PROPS = set(['plurk_id', 'owner_id', 'user_id', 'posted',
        'content', 'content_raw', 'qualifier', 'qualifier_translated', 'lang',
        'response_count', 'responses_seen', 'is_unread', 'plurk_type',
        'no_comments', 'favorite', 'favorite_count', 'favorers',
        'replurkable', 'replurked', 'replurker_id', 'replurkers',
        'replurkers_count', 'limited_to', 'porn', 'anonymous', 'coins',
        'has_gift', 'last_edited'])
    REQUIRED_PROPS = ('plurk_id', 'owner_id', 'posted', 'content_raw',
                      'qualifier')
    INTEGER_PROPS = ('plurk_id', 'owner_id', 'user_id')
    DATE_PROPS = ('posted', 'last_edited')



class Response(PlurkObject):
    """
    Snapshot of a response to a plurk.
    """
    SIMPLE_PROPS = set(['id', 'plurk_id', 'user_id', 'posted', 'content',
        'content_raw', 'qualifier', 'lang', 'editability', 'last_edited'])
    REQUIRED_PROPS = ('id', 'plurk_id', 'user_id', 'posted', 'content_raw',
                      'qualifier')
    INTEGER_PROPS = ('id', 'plurk_id', 'user_id')
    DATE_PROPS = ('posted', 'last_edited')



class NotificationCounts(PlurkObject):
    """
    Unread notification and friend request counters.
    """
    SIMPLE_PROPS = set(['noti', 'req'])
    REQUIRED_PROPS = ('noti', 'req')
    INTEGER_PROPS = ('noti', 'req')



class NewResponse(object):
    """
    Someone responded to a plurk on the user's timeline.

    @ivar users: Mapping of user id, as a string, to L{User}.
    """
    TYPE = 'new_response'

    def __init__(self, plurk_id, plurk, response, response_count, users):
        self.plurk_id = plurk_id
        self.plurk = plurk
        self.response = response
        self.response_count = response_count
        self.users = users


    @classmethod
    def fromDict(cls, data):
        for name in ('plurk_id', 'plurk', 'response', 'response_count',
                     'user'):
            if name not in data:
                raise PayloadDecodeError("Missing %r in %s" % (name, cls.TYPE))
        for name in ('plurk_id', 'response_count'):
            if not _isInteger(data[name]):
                raise PayloadDecodeError("Invalid %s %r" % (name, data[name]))
        if not isinstance(data['user'], dict):
            raise PayloadDecodeError("Expected an object for 'user', got %r" %
                                     (data['user'],))

        users = dict((userID, User.fromDict(user))
                     for userID, user in data['user'].items())
        return cls(data['plurk_id'],
                   PlurkData.fromDict(data['plurk']),
                   Response.fromDict(data['response']),
                   data['response_count'],
                   users)


    def responder(self):
        """
        Return the L{User} who wrote the response, if it was included.
        """
        return self.users.get(str(self.response.user_id))


    def __repr__(self):
        return "%s(plurk_id=%r, response=%r)" % (self.__class__.__name__,
                                                 self.plurk_id, self.response)



class NewPlurk(object):
    """
    A new plurk appeared on the user's timeline.

    On the wire the plurk fields are part of the event itself.
    """
    TYPE = 'new_plurk'

    def __init__(self, plurk):
        self.plurk = plurk


    @property
    def plurk_id(self):
        return self.plurk.plurk_id


    @classmethod
    def fromDict(cls, data):
        return cls(PlurkData.fromDict(data))


    def __repr__(self):
        return "%s(%r)" % (self.__class__.__name__, self.plurk)



class Notification(object):
    """
    The notification counters changed.
    """
    TYPE = 'update_notification'

    def __init__(self, counts):
        self.counts = counts


    @classmethod
    def fromDict(cls, data):
        if 'counts' not in data:
            raise PayloadDecodeError("Missing 'counts' in %s" % (cls.TYPE,))
        return cls(NotificationCounts.fromDict(data['counts']))


    def __repr__(self):
        return "%s(noti=%r, req=%r)" % (self.__class__.__name__,
                                        self.counts.noti, self.counts.req)


CONTENT_TYPES = dict((cls.TYPE, cls)
                     for cls in (NewResponse, NewPlurk, Notification))


def contentFromDict(data):
    """
    Decode one event from the comet payload into its content unit.

    @raise PayloadDecodeError: The event has an unknown C{type} or does not
        have the shape of its type.
    """
    if not isinstance(data, dict):
        raise PayloadDecodeError("Expected an event object, got %r" % (data,))
    try:
        cls = CONTENT_TYPES[data.get('type')]
    except (KeyError, TypeError):
        raise PayloadDecodeError("Unknown event type %r" % (data.get('type'),))
    return cls.fromDict(data)



class PollResult(object):
    """
    The decoded result of one long-poll.

    @ivar new_offset: Offset to use for the next poll.
    @ivar events: List of content units, or C{None} when the server sent
        no data.
    """

    def __init__(self, new_offset, events=None):
        self.new_offset = new_offset
        self.events = events


    def __repr__(self):
        return "PollResult(new_offset=%r, events=%r)" % (self.new_offset,
                                                         self.events)



def unwrapFrame(text):
    """
    Strip the script callback wrapper from a comet response.

    @param text: Response body, as C{str} or UTF-8 encoded C{bytes}.
    @return: The unparsed payload between the parentheses.
    @raise WireFormatError: The wrapper is missing or malformed.
    """
    if isinstance(text, bytes):
        try:
            text = text.decode('utf-8')
        except UnicodeDecodeError as e:
            raise WireFormatError("Undecodable comet response: %s" % (e,))

    stripped = text.strip()
    if not stripped.startswith(FRAME_PREFIX):
        raise WireFormatError("Missing comet callback in %r" % (text[:80],))
    if (len(stripped) < len(FRAME_PREFIX) + len(FRAME_SUFFIX) or
        not stripped.endswith(FRAME_SUFFIX)):
        raise WireFormatError("Unterminated comet callback in %r" %
                              (text[-80:],))

    payload = stripped[len(FRAME_PREFIX):-len(FRAME_SUFFIX)]
    if not payload.strip():
        raise WireFormatError("Empty comet callback")
    return payload



def classify(payload):
    """
    Decode a comet payload into a L{PollResult}.

    Decoding is all or nothing: if any event fails to decode, no events are
    returned.

    @raise PayloadDecodeError: The payload is not valid JSON, lacks an
        integer C{new_offset} or holds an invalid event.
    """
    try:
        obj = json.loads(payload)
    except ValueError as e:
        raise PayloadDecodeError("Invalid JSON in comet payload: %s" % (e,))

    if not isinstance(obj, dict):
        raise PayloadDecodeError("Expected an object, got %r" % (obj,))
    newOffset = obj.get('new_offset')
    if not _isInteger(newOffset):
        raise PayloadDecodeError("Invalid new_offset %r" % (newOffset,))

    data = obj.get('data')
    if data is None:
        return PollResult(newOffset)
    if not isinstance(data, list):
        raise PayloadDecodeError("Expected a list of events, got %r" % (data,))

    events = [contentFromDict(item) for item in data]
    return PollResult(newOffset, events)



def decode(text):
    """
    Unwrap and classify a comet response body.
    """
    return classify(unwrapFrame(text))



class Channel(object):
    """
    A negotiated comet channel.

    Only L{offset} changes after negotiation, and only by adopting the
    offset handed out by the server.

    @ivar base_url: URL to long-poll.
    @ivar channel_name: Name of the channel, sent with every poll and knock.
    @ivar offset: Current cursor.
    """

    def __init__(self, base_url, channel_name, offset):
        self.base_url = base_url
        self.channel_name = channel_name
        self.offset = offset


    @classmethod
    def fromServerURL(cls, url):
        """
        Create a channel from the C{comet_server} URL returned by
        C{/APP/Realtime/getUserChannel}.

        The URL's query holds C{channel} and C{offset}. The URL to poll is
        C{comet} resolved against the server URL.

        @raise NegotiationError: The URL is malformed or lacks the expected
            query fields.
        """
        if not isinstance(url, str):
            raise NegotiationError("Invalid comet server URL %r" % (url,))
        try:
            parts = urlsplit(url)
        except ValueError as e:
            raise NegotiationError("Invalid comet server URL %r: %s" %
                                   (url, e))
        if not parts.scheme or not parts.netloc:
            raise NegotiationError("Invalid comet server URL %r" % (url,))
        if not parts.query:
            raise NegotiationError("No query in comet server URL %r" % (url,))

        query = parse_qs(parts.query, keep_blank_values=True)
        try:
            channelName = query['channel'][0]
            offset = int(query['offset'][0])
        except KeyError as e:
            raise NegotiationError("Missing %s in comet server URL %r" %
                                   (e, url))
        except ValueError:
            raise NegotiationError("Invalid offset in comet server URL %r" %
                                   (url,))
        if not channelName:
            raise NegotiationError("Empty channel in comet server URL %r" %
                                   (url,))

        return cls(urljoin(url, 'comet'), channelName, offset)


    def adopt(self, newOffset):
        """
        Take the offset handed out by the server for the next poll.
        """
        if newOffset < self.offset:
            log.msg("Comet offset moved backwards from %d to %d" %
                    (self.offset, newOffset))
        self.offset = newOffset


    def __repr__(self):
        return "Channel(base_url=%r, channel_name=%r, offset=%r)" % (
                self.base_url, self.channel_name, self.offset)

# vim: set expandtab:
