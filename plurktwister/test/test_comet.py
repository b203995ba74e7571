# Copyright (c) 2022  plurktwister contributors
# See LICENSE.txt for details

"""
Tests for L{plurktwister.comet}.
"""

import simplejson as json

from twisted.trial import unittest

from plurktwister import comet
from plurktwister.error import NegotiationError, PayloadDecodeError
from plurktwister.error import WireFormatError


def buildFrame(payload):
    """
    Wrap a payload the way the comet server does.
    """
    return comet.FRAME_PREFIX + payload + comet.FRAME_SUFFIX



def plurkData(**kwargs):
    data = {
        'plurk_id': 100,
        'owner_id': 3,
        'user_id': 3,
        'posted': 'Fri, 05 Jun 2009 23:07:13 GMT',
        'content': '<b>hello</b> world',
        'content_raw': '**hello** world',
        'qualifier': 'says',
        'lang': 'en',
        'response_count': 1,
        'plurk_type': 0,
        'no_comments': 0,
        'favorers': [],
        'replurkers': [],
        }
    data.update(kwargs)
    return data



def responseData(**kwargs):
    data = {
        'id': 500,
        'plurk_id': 100,
        'user_id': 7,
        'posted': 'Fri, 05 Jun 2009 23:08:00 GMT',
        'content': 'indeed',
        'content_raw': 'indeed',
        'qualifier': 'thinks',
        'lang': 'en',
        'editability': 0,
        }
    data.update(kwargs)
    return data



def newResponseData():
    return {
        'type': 'new_response',
        'plurk_id': 100,
        'plurk': plurkData(),
        'response': responseData(),
        'response_count': 1,
        'user': {
            '7': {'id': 7, 'nick_name': 'alice', 'display_name': 'Alice'},
            },
        }



class UnwrapFrameTest(unittest.TestCase):
    """
    Tests for L{comet.unwrapFrame}.
    """

    def test_roundTrip(self):
        """
        The payload between the callback parentheses is returned unparsed.
        """
        for payload in ['{"new_offset": 42, "data": null}',
                        '{"new_offset": -1}',
                        '{"data": [{"content_raw": "a);b"}], "new_offset": 0}',
                        '[1, 2, 3]']:
            self.assertEqual(payload, comet.unwrapFrame(buildFrame(payload)))


    def test_bytes(self):
        """
        A UTF-8 encoded response body is accepted.
        """
        frame = buildFrame('{"new_offset": 1, "data": null}')
        self.assertEqual('{"new_offset": 1, "data": null}',
                         comet.unwrapFrame(frame.encode('utf-8')))


    def test_surroundingWhitespace(self):
        """
        Whitespace around the callback, like a trailing newline, is ignored.
        """
        frame = '\n' + buildFrame('{"new_offset": 1}') + '\r\n'
        self.assertEqual('{"new_offset": 1}', comet.unwrapFrame(frame))


    def test_missingWrapper(self):
        """
        Plain JSON without the callback is rejected.
        """
        self.assertRaises(WireFormatError, comet.unwrapFrame,
                          '{"new_offset": 42, "data": null}')


    def test_wrongCallback(self):
        self.assertRaises(WireFormatError, comet.unwrapFrame,
                          'OtherChannel.scriptCallback({"new_offset": 1});')


    def test_missingSemicolon(self):
        """
        The trailing syntax must be complete.
        """
        self.assertRaises(WireFormatError, comet.unwrapFrame,
                          'CometChannel.scriptCallback({"new_offset": 1})')


    def test_unterminated(self):
        self.assertRaises(WireFormatError, comet.unwrapFrame,
                          'CometChannel.scriptCallback({"new_offset": 1}')


    def test_empty(self):
        self.assertRaises(WireFormatError, comet.unwrapFrame, '')
        self.assertRaises(WireFormatError, comet.unwrapFrame,
                          'CometChannel.scriptCallback();')


    def test_undecodable(self):
        self.assertRaises(WireFormatError, comet.unwrapFrame,
                          b'CometChannel.scriptCallback(\xff);')



class ClassifyTest(unittest.TestCase):
    """
    Tests for L{comet.classify}.
    """

    def test_newPlurk(self):
        """
        A C{new_plurk} event carries the plurk fields directly.
        """
        payload = json.dumps({'new_offset': 42,
                              'data': [dict(plurkData(), type='new_plurk')]})
        result = comet.classify(payload)
        self.assertEqual(42, result.new_offset)
        self.assertEqual(1, len(result.events))
        unit = result.events[0]
        self.assertIsInstance(unit, comet.NewPlurk)
        self.assertEqual(100, unit.plurk_id)
        self.assertEqual(3, unit.plurk.owner_id)
        self.assertEqual('**hello** world', unit.plurk.content_raw)
        self.assertEqual('says', unit.plurk.qualifier)
        self.assertEqual(2009, unit.plurk.posted.year)
        self.assertEqual(13, unit.plurk.posted.second)


    def test_newResponse(self):
        payload = json.dumps({'new_offset': 43, 'data': [newResponseData()]})
        unit = comet.classify(payload).events[0]
        self.assertIsInstance(unit, comet.NewResponse)
        self.assertEqual(100, unit.plurk_id)
        self.assertEqual(100, unit.plurk.plurk_id)
        self.assertEqual(500, unit.response.id)
        self.assertEqual('thinks', unit.response.qualifier)
        self.assertEqual(1, unit.response_count)
        self.assertEqual(['7'], list(unit.users.keys()))
        self.assertEqual('Alice', unit.responder().displayName())


    def test_newResponseUnknownResponder(self):
        data = newResponseData()
        data['user'] = {}
        unit = comet.classify(json.dumps({'new_offset': 1,
                                          'data': [data]})).events[0]
        self.assertIdentical(None, unit.responder())


    def test_notification(self):
        payload = json.dumps({
            'new_offset': 44,
            'data': [{'type': 'update_notification',
                      'counts': {'noti': 2, 'req': 1}}]})
        unit = comet.classify(payload).events[0]
        self.assertIsInstance(unit, comet.Notification)
        self.assertEqual(2, unit.counts.noti)
        self.assertEqual(1, unit.counts.req)


    def test_order(self):
        """
        Events are returned in the order they were sent.
        """
        payload = json.dumps({
            'new_offset': 45,
            'data': [
                {'type': 'update_notification',
                 'counts': {'noti': 0, 'req': 0}},
                dict(plurkData(plurk_id=1), type='new_plurk'),
                newResponseData(),
                dict(plurkData(plurk_id=2), type='new_plurk'),
                ]})
        events = comet.classify(payload).events
        self.assertEqual(['update_notification', 'new_plurk', 'new_response',
                          'new_plurk'],
                         [unit.TYPE for unit in events])
        self.assertEqual(1, events[1].plurk_id)
        self.assertEqual(2, events[3].plurk_id)


    def test_noData(self):
        """
        A null or missing C{data} gives no events.
        """
        result = comet.classify('{"new_offset": 42, "data": null}')
        self.assertEqual(42, result.new_offset)
        self.assertIdentical(None, result.events)

        result = comet.classify('{"new_offset": 43}')
        self.assertIdentical(None, result.events)


    def test_emptyData(self):
        result = comet.classify('{"new_offset": 42, "data": []}')
        self.assertEqual([], result.events)


    def test_largeOffset(self):
        result = comet.classify('{"new_offset": 9223372036854775807}')
        self.assertEqual(2 ** 63 - 1, result.new_offset)


    def test_unknownType(self):
        """
        An unknown event type fails the whole batch.
        """
        payload = json.dumps({
            'new_offset': 42,
            'data': [dict(plurkData(), type='new_plurk'),
                     {'type': 'unknown_tag'}]})
        self.assertRaises(PayloadDecodeError, comet.classify, payload)


    def test_missingType(self):
        payload = json.dumps({'new_offset': 42, 'data': [plurkData()]})
        self.assertRaises(PayloadDecodeError, comet.classify, payload)


    def test_invalidVariantShape(self):
        """
        An event missing a required field fails the whole batch.
        """
        data = newResponseData()
        del data['response']['user_id']
        payload = json.dumps({'new_offset': 42, 'data': [data]})
        self.assertRaises(PayloadDecodeError, comet.classify, payload)


    def test_invalidIdentifier(self):
        payload = json.dumps({
            'new_offset': 42,
            'data': [dict(plurkData(plurk_id='100'), type='new_plurk')]})
        self.assertRaises(PayloadDecodeError, comet.classify, payload)


    def test_invalidTimestamp(self):
        payload = json.dumps({
            'new_offset': 42,
            'data': [dict(plurkData(posted='yesterday'), type='new_plurk')]})
        self.assertRaises(PayloadDecodeError, comet.classify, payload)


    def test_nonStringTimestamp(self):
        payload = json.dumps({
            'new_offset': 42,
            'data': [dict(plurkData(posted=1234), type='new_plurk')]})
        self.assertRaises(PayloadDecodeError, comet.classify, payload)


    def test_nullRequiredField(self):
        """
        A required field that is null fails the whole batch.
        """
        for name in ('posted', 'content_raw', 'qualifier'):
            payload = json.dumps({
                'new_offset': 42,
                'data': [dict(plurkData(**{name: None}), type='new_plurk')]})
            self.assertRaises(PayloadDecodeError, comet.classify, payload)


    def test_invalidResponseCount(self):
        data = newResponseData()
        data['response_count'] = 'many'
        payload = json.dumps({'new_offset': 42, 'data': [data]})
        self.assertRaises(PayloadDecodeError, comet.classify, payload)


    def test_invalidNotification(self):
        payload = json.dumps({
            'new_offset': 42,
            'data': [{'type': 'update_notification', 'counts': {'noti': 1}}]})
        self.assertRaises(PayloadDecodeError, comet.classify, payload)


    def test_invalidJSON(self):
        self.assertRaises(PayloadDecodeError, comet.classify,
                          '{"new_offset": 42, "data": [')


    def test_missingOffset(self):
        self.assertRaises(PayloadDecodeError, comet.classify, '{"data": []}')


    def test_invalidOffset(self):
        self.assertRaises(PayloadDecodeError, comet.classify,
                          '{"new_offset": "42"}')
        self.assertRaises(PayloadDecodeError, comet.classify,
                          '{"new_offset": true}')


    def test_notAnObject(self):
        self.assertRaises(PayloadDecodeError, comet.classify, '[42]')


    def test_dataNotAList(self):
        self.assertRaises(PayloadDecodeError, comet.classify,
                          '{"new_offset": 42, "data": {"type": "new_plurk"}}')


    def test_decode(self):
        """
        L{comet.decode} unwraps and classifies in one go.
        """
        frame = buildFrame(json.dumps({
            'new_offset': 42,
            'data': [dict(plurkData(), type='new_plurk')]}))
        result = comet.decode(frame)
        self.assertEqual(42, result.new_offset)
        self.assertEqual(100, result.events[0].plurk_id)



class PlurkObjectTest(unittest.TestCase):
    """
    Tests for L{comet.PlurkObject} and subclasses.
    """

    def test_fromDictKeepsRaw(self):
        data = plurkData()
        plurk = comet.PlurkData.fromDict(data)
        self.assertIdentical(data, plurk.raw)


    def test_fromDictIgnoresUnknown(self):
        plurk = comet.PlurkData.fromDict(plurkData(unknown_field=1))
        self.assertFalse(hasattr(plurk, 'unknown_field'))


    def test_displayNameFallback(self):
        user = comet.User.fromDict({'id': 5, 'nick_name': 'bob'})
        self.assertEqual('bob', user.displayName())
        user = comet.User.fromDict({'id': 5})
        self.assertEqual('5', user.displayName())


    def test_repr(self):
        counts = comet.NotificationCounts.fromDict({'noti': 1, 'req': 2})
        self.assertEqual("NotificationCounts(noti=1, req=2)", repr(counts))
        self.assertEqual("Notification(noti=1, req=2)",
                         repr(comet.Notification(counts)))



class ChannelTest(unittest.TestCase):
    """
    Tests for L{comet.Channel}.
    """

    def test_fromServerURL(self):
        """
        The channel and offset come from the query, the URL to poll is
        C{comet} relative to the server URL.
        """
        channel = comet.Channel.fromServerURL(
            'https://comet03.plurk.com/comet/1235515351741/'
            '?channel=generic-4-f733d8522327edf87b4d1651e6395a6cca0807a0'
            '&offset=0')
        self.assertEqual('https://comet03.plurk.com/comet/1235515351741/comet',
                         channel.base_url)
        self.assertEqual('generic-4-f733d8522327edf87b4d1651e6395a6cca0807a0',
                         channel.channel_name)
        self.assertEqual(0, channel.offset)


    def test_fromServerURLRoot(self):
        channel = comet.Channel.fromServerURL(
            'https://comet.plurk.com/?channel=abc&offset=-3')
        self.assertEqual('https://comet.plurk.com/comet', channel.base_url)
        self.assertEqual(-3, channel.offset)


    def test_fromServerURLEncoded(self):
        channel = comet.Channel.fromServerURL(
            'https://comet.plurk.com/?channel=a%2Fb%20c&offset=7')
        self.assertEqual('a/b c', channel.channel_name)


    def test_noQuery(self):
        self.assertRaises(NegotiationError, comet.Channel.fromServerURL,
                          'https://comet.plurk.com/comet/')


    def test_missingChannel(self):
        self.assertRaises(NegotiationError, comet.Channel.fromServerURL,
                          'https://comet.plurk.com/?offset=0')


    def test_missingOffset(self):
        self.assertRaises(NegotiationError, comet.Channel.fromServerURL,
                          'https://comet.plurk.com/?channel=abc')


    def test_invalidOffset(self):
        self.assertRaises(NegotiationError, comet.Channel.fromServerURL,
                          'https://comet.plurk.com/?channel=abc&offset=x')


    def test_notAURL(self):
        self.assertRaises(NegotiationError, comet.Channel.fromServerURL,
                          'channel=abc&offset=0')
        self.assertRaises(NegotiationError, comet.Channel.fromServerURL, None)


    def test_adopt(self):
        channel = comet.Channel('https://comet.plurk.com/comet', 'abc', 5)
        channel.adopt(9)
        self.assertEqual(9, channel.offset)


    def test_adoptBackwards(self):
        """
        The server's offset is taken verbatim, even if it decreased.
        """
        channel = comet.Channel('https://comet.plurk.com/comet', 'abc', 5)
        channel.adopt(2)
        self.assertEqual(2, channel.offset)
