# -*- test-case-name: plurktwister.test.test_plurk -*-
#
# Copyright (c) 2022  plurktwister contributors
# See LICENSE.txt for details

"""
Twisted Plurk interface.

@see: U{https://www.plurk.com/API}.
"""

import logging
from io import BytesIO
from urllib.parse import parse_qsl, urlencode

import simplejson as json
from oauthlib import oauth1

from twisted.application import service
from twisted.internet import defer
from twisted.python import failure, log
from twisted.web import client, http_headers

from plurktwister import comet
from plurktwister.error import Error, NegotiationError, PayloadDecodeError
from plurktwister.error import TransportError, WireFormatError

BASE_URL = "https://www.plurk.com"
KNOCK_URL = "https://www.plurk.com/_comet/generic"

REQUEST_TOKEN_PATH = "/OAuth/request_token"
AUTHORIZE_PATH = "/OAuth/authorize"
ACCESS_TOKEN_PATH = "/OAuth/access_token"
USER_CHANNEL_PATH = "/APP/Realtime/getUserChannel"

FORM_CONTENT_TYPE = 'application/x-www-form-urlencoded'

# Long-poll requests are held open by the server until there is data.
POLL_TIMEOUT = 120
KNOCK_TIMEOUT = 30
DEFAULT_TIMEOUT = 60

# Knock when the iteration counter exceeds this value.
KNOCK_INTERVAL = 10


logger = logging.getLogger('plurktwister.plurk')


class Plurk(object):
    """
    Plurk API client.

    All application calls are POST requests signed with OAuth 1.0a, and
    fire with the decoded JSON body. Network failures, timeouts and
    non-success responses errback with L{TransportError}.
    """

    userAgent = "plurk twister"

    def __init__(self, consumer_key, consumer_secret, token_key=None,
                 token_secret=None, base_url=BASE_URL,
                 timeout=DEFAULT_TIMEOUT, agent=None, reactor=None):
        if reactor is None:
            from twisted.internet import reactor
        self.reactor = reactor
        if agent is None:
            agent = client.Agent(reactor)
        self.agent = agent

        self.base_url = base_url
        self.timeout = timeout

        self.consumer_key = consumer_key
        self.consumer_secret = consumer_secret
        self.token_key = token_key
        self.token_secret = token_secret


    def hasToken(self):
        return bool(self.token_key and self.token_secret)


    def _oauthClient(self, **kwargs):
        if 'resource_owner_key' not in kwargs and self.hasToken():
            kwargs['resource_owner_key'] = self.token_key
            kwargs['resource_owner_secret'] = self.token_secret
        return oauth1.Client(self.consumer_key,
                             client_secret=self.consumer_secret,
                             **kwargs)


    def _makeOAuthRequest(self, url, params=None, oauthClient=None):
        """
        Sign a form encoded POST request.

        @return: Tuple of headers and encoded body.
        """
        if oauthClient is None:
            oauthClient = self._oauthClient()
        body = urlencode(sorted((params or {}).items()))
        headers = {'Content-Type': FORM_CONTENT_TYPE}
        _, headers, body = oauthClient.sign(url, http_method='POST',
                                            body=body, headers=headers)
        return headers, body


    def _request(self, method, url, headers=None, body=None, timeout=None):
        """
        Issue a request and return a deferred that fires with the body.

        Cancelling the returned deferred aborts the request. A
        L{defer.CancelledError} is passed on as is, all other failures are
        turned into L{TransportError}.
        """
        rawHeaders = {'User-Agent': [self.userAgent]}
        for name, value in (headers or {}).items():
            rawHeaders[name] = [value]

        bodyProducer = None
        if body is not None:
            bodyProducer = client.FileBodyProducer(BytesIO(body.encode('utf-8')))

        logger.debug("%s %s", method, url)
        d = self.agent.request(method.encode('ascii'), url.encode('utf-8'),
                               http_headers.Headers(rawHeaders), bodyProducer)

        def cb(response):
            d = client.readBody(response)
            if 200 <= response.code < 300:
                return d

            def raiseError(_):
                phrase = response.phrase
                if isinstance(phrase, bytes):
                    phrase = phrase.decode('latin-1')
                raise TransportError(url, phrase, response.code)
            d.addBoth(raiseError)
            return d

        def trapTransport(reason):
            if reason.check(TransportError, defer.CancelledError):
                return reason
            raise TransportError(url, reason.getErrorMessage())

        d.addCallback(cb)
        if timeout:
            d.addTimeout(timeout, self.reactor)
        d.addErrback(trapTransport)
        return d


    def _decodeJSON(self, body, url):
        try:
            return json.loads(body)
        except ValueError as e:
            raise Error("Invalid JSON from %s: %s" % (url, e))


    def requestQuery(self, path, params):
        """
        Call an API method with parameters.
        """
        url = self.base_url + path
        headers, body = self._makeOAuthRequest(url, params)
        d = self._request('POST', url, headers, body, self.timeout)
        d.addCallback(self._decodeJSON, url)
        return d


    def request(self, path):
        """
        Call an API method without parameters.
        """
        return self.requestQuery(path, {})


    def _parseToken(self, body, url):
        token = dict(parse_qsl(body.decode('utf-8')))
        try:
            return token['oauth_token'], token['oauth_token_secret']
        except KeyError:
            raise Error("No token in response from %s" % (url,))


    def _tokenRequest(self, path, oauthClient):
        url = self.base_url + path
        headers, body = self._makeOAuthRequest(url, oauthClient=oauthClient)
        d = self._request('POST', url, headers, body, self.timeout)
        d.addCallback(self._parseToken, url)
        return d


    def getRequestToken(self):
        """
        Get a request token for out-of-band authorization.

        @return: Deferred that fires with a tuple of token and secret.
        """
        return self._tokenRequest(REQUEST_TOKEN_PATH,
                                  self._oauthClient(callback_uri='oob'))


    def authorizeURL(self, requestToken):
        """
        URL the user visits to authorize the request token and get a PIN.
        """
        return "%s%s?%s" % (self.base_url, AUTHORIZE_PATH,
                            urlencode({'oauth_token': requestToken}))


    def getAccessToken(self, requestToken, requestSecret, verifier):
        """
        Exchange an authorized request token for an access token.

        On success the access token is used for subsequent requests.

        @return: Deferred that fires with a tuple of token and secret.
        """
        oauthClient = self._oauthClient(resource_owner_key=requestToken,
                                        resource_owner_secret=requestSecret,
                                        verifier=verifier)

        def cb(token):
            self.token_key, self.token_secret = token
            return token

        d = self._tokenRequest(ACCESS_TOKEN_PATH, oauthClient)
        d.addCallback(cb)
        return d


    def me(self):
        "Get the profile of the authenticated user."
        d = self.request('/APP/Users/me')
        d.addCallback(comet.User.fromDict)
        return d


    def getPublicProfile(self, user_id):
        """
        Get the public profile of a user.

        @return: Deferred that fires with a L{comet.User}.
        """
        def cb(result):
            if not isinstance(result, dict) or 'user_info' not in result:
                raise Error("No user_info in public profile of %s" %
                            (user_id,))
            return comet.User.fromDict(result['user_info'])

        d = self.requestQuery('/APP/Profile/getPublicProfile',
                              {'user_id': str(user_id)})
        d.addCallback(cb)
        return d


    def getPlurks(self, offset=None, limit=None):
        """
        Get plurks from the user's timeline, newer than C{offset}.

        @param offset: ISO 8601 timestamp, e.g. C{'2022-10-01T12:00:00Z'}.
        @return: Deferred that fires with a tuple of a list of
            L{comet.PlurkData} and a dict of owner ID to L{comet.User}.
        """
        params = {}
        if offset is not None:
            params['offset'] = offset
        if limit is not None:
            params['limit'] = str(limit)

        def cb(result):
            plurks = [comet.PlurkData.fromDict(p)
                      for p in result.get('plurks') or []]
            users = dict((int(userID), comet.User.fromDict(user))
                         for userID, user
                         in (result.get('plurk_users') or {}).items())
            return plurks, users

        d = self.requestQuery('/APP/Polling/getPlurks', params)
        d.addCallback(cb)
        return d



class CometFeed(Plurk):
    """
    Realtime feed handling class.

    Negotiation is a signed API call. Polls and knocks are plain GET
    requests against the comet servers.
    """

    knockURL = KNOCK_URL

    def getUserChannel(self):
        """
        Negotiate a comet channel.

        @return: Deferred that fires with a L{comet.Channel}.
        @raise NegotiationError: The response could not be parsed.
        """
        def cb(result):
            if not isinstance(result, dict) or 'comet_server' not in result:
                raise NegotiationError("No comet_server in %r" % (result,))
            return comet.Channel.fromServerURL(result['comet_server'])

        def eb(reason):
            reason.trap(Error)
            if reason.check(NegotiationError):
                return reason
            raise NegotiationError("Cannot get user channel: %s" %
                                   (reason.getErrorMessage(),))

        d = self.request(USER_CHANNEL_PATH)
        d.addCallback(cb)
        d.addErrback(eb)
        return d


    def poll(self, channel):
        """
        Long-poll the channel from its current offset.

        @return: Deferred that fires with the raw response body.
        """
        url = channel.base_url + '?' + urlencode(
                [('channel', channel.channel_name),
                 ('offset', str(channel.offset))])
        return self._request('GET', url, timeout=POLL_TIMEOUT)


    def knock(self, channel):
        """
        Refresh the channel's lease. The response is discarded.
        """
        url = self.knockURL + '?' + urlencode(
                [('channel', channel.channel_name)])
        d = self._request('GET', url, timeout=KNOCK_TIMEOUT)
        d.addCallback(lambda _: None)
        return d



class CometMonitor(service.Service):
    """
    Comet polling service.

    Negotiates a channel when started, then polls it until stopped, passing
    every decoded content unit to the consumer. Errors while polling are
    logged and the poll is retried from the same offset after a back-off
    delay. Only a failed negotiation ends the loop on its own, by firing
    L{deferred} with the failure.

    @ivar consumer: The consumer of content units. Its C{onContent} is
        called with each unit, in order. If it returns a deferred, the next
        unit is delivered when that fires.

    @ivar channel: The current channel.
    @type channel: L{comet.Channel}

    @ivar knockCount: Iterations since the last knock.

    @ivar deferred: Fires with C{None} when the service is stopped, or
        with a failure when negotiation fails.

    @ivar _state: Current state.

    @ivar _errorState: Current error state. One of C{None}, C{'transport'},
        C{'format'}, C{'other'}.

    @ivar _delay: Current retry delay, in seconds.

    @cvar backOffs: Configuration of back-off strategies for the various
        error states: C{'initial'} and C{'max'} delay in seconds, the
        C{'factor'} applied on each consecutive error and the
        C{'errorTypes'} to match failures against.
    @type backOffs: C{dict}
    """

    consumer = None
    channel = None
    knockCount = 0

    _state = None
    _errorState = None
    _delay = None
    _pollDeferred = None
    _knockDeferred = None
    _retryDelayedCall = None

    backOffs = {
            # Back-off settings for network errors and HTTP error statuses
            'transport': {
                'errorTypes': (TransportError,),
                'initial': 0.25,
                'max': 16,
                'factor': 2,
                },
            # Back-off settings for responses we could not decode
            'format': {
                'errorTypes': (WireFormatError, PayloadDecodeError),
                'initial': 1,
                'max': 60,
                'factor': 2,
                },
            # Back-off settings for other, non-specific errors.
            'other': {
                'initial': 10,
                'max': 240,
                'factor': 2,
                },
            }

    def __init__(self, api, consumer=None, reactor=None):
        """
        Initialize the monitor.

        This sets the initial state to C{'stopped'}.

        @param api: The API used to negotiate, poll and knock.
        @type api: L{CometFeed}

        @param consumer: An optional consumer of content units.

        @param reactor: An optional reactor, used for scheduling retries.
        """
        if reactor is None:
            from twisted.internet import reactor
        self.api = api
        self.consumer = consumer
        self.reactor = reactor
        self.deferred = defer.Deferred()
        self._state = 'stopped'


    def startService(self):
        """
        Start the service by negotiating a new channel.
        """
        service.Service.startService(self)
        if self.deferred.called:
            self.deferred = defer.Deferred()
        self._toState('negotiating')


    def stopService(self):
        """
        Stop the service, aborting any request in flight.
        """
        service.Service.stopService(self)
        self._toState('stopped')


    def knock(self):
        """
        Knock on the channel, unless a knock is still outstanding.

        @return: Whether a knock was issued.
        """
        if self._knockDeferred is not None:
            logger.warning("Previous comet knock still outstanding")
            return False

        def done(result):
            self._knockDeferred = None
            if (isinstance(result, failure.Failure) and
                not result.check(defer.CancelledError)):
                logger.warning("Comet knock failed: %s",
                               result.getErrorMessage())

        d = self._knockDeferred = self.api.knock(self.channel)
        d.addBoth(done)
        return True


    def _deliver(self, _, unit):
        if self._state == 'stopped' or self.consumer is None:
            return
        d = defer.maybeDeferred(self.consumer.onContent, unit)
        d.addErrback(log.err, "Error delivering %r" % (unit,))
        return d


    def _toState(self, state, *args, **kwargs):
        """
        Transition to the next state.

        @param state: Name of the next state.
        """
        try:
            method = getattr(self, '_state_%s' % state)
        except AttributeError:
            raise ValueError("No such state %r" % state)

        log.msg("%s: to state %r" % (self.__class__.__name__, state))
        self._state = state
        method(*args, **kwargs)


    def _state_stopped(self):
        """
        The service is not running.

        This is the initial state, and the state after L{stopService} was
        called. Requests in flight and a pending retry are cancelled and no
        more content is delivered.
        """
        if self._retryDelayedCall is not None:
            self._retryDelayedCall.cancel()
            self._retryDelayedCall = None
        if self._pollDeferred is not None:
            self._pollDeferred.cancel()
        if self._knockDeferred is not None:
            self._knockDeferred.cancel()
        if not self.deferred.called:
            self.deferred.callback(None)


    def _state_negotiating(self):
        """
        A channel is being negotiated.

        Success results in the state C{'polling'} with a fresh channel and
        knock counter. Failure is fatal.
        """
        def cb(channel):
            self._pollDeferred = None
            self.channel = channel
            self.knockCount = 0
            self._errorState = None
            log.msg("Negotiated %r" % (channel,))
            self._toState('polling')

        def eb(reason):
            self._pollDeferred = None
            if self._state == 'stopped':
                return
            self._toState('failed', reason)

        d = self._pollDeferred = self.api.getUserChannel()
        d.addCallbacks(cb, eb)


    def _state_failed(self, reason):
        """
        Negotiation failed. The loop is never started.
        """
        self.deferred.errback(reason)


    def _state_polling(self):
        """
        A long-poll is in flight.

        Before polling, knock on the channel if the counter exceeds
        L{KNOCK_INTERVAL}, otherwise count this iteration. The counter is
        only reset when the knock was issued, so a skipped knock is tried
        again on the next iteration.
        """
        if self.knockCount > KNOCK_INTERVAL:
            if self.knock():
                self.knockCount = 0
        else:
            self.knockCount += 1

        def cb(body):
            self._pollDeferred = None
            self._toState('classifying', body)

        def eb(reason):
            self._pollDeferred = None
            if self._state == 'stopped':
                return
            self._toState('error', reason)

        d = self._pollDeferred = self.api.poll(self.channel)
        d.addCallbacks(cb, eb)
        d.addErrback(log.err)


    def _state_classifying(self, body):
        """
        A response was received and is being decoded.

        On success the new offset is adopted and the state becomes
        C{'dispatching'}. Decoding errors leave the offset as it was.
        """
        try:
            result = comet.decode(body)
        except Exception:
            self._toState('error', failure.Failure())
            return

        self.channel.adopt(result.new_offset)
        self._errorState = None
        self._toState('dispatching', result.events or [])


    def _state_dispatching(self, events):
        """
        Content units are delivered to the consumer, in order.
        """
        def done(_):
            if self._state == 'dispatching':
                self._toState('polling')

        d = defer.succeed(None)
        for unit in events:
            d.addCallback(self._deliver, unit)
        d.addCallback(done)


    def _state_error(self, reason):
        """
        The poll resulted in an error.

        Retry from the same offset with a back-off algorithm.
        """
        for errorState, backOff in self.backOffs.items():
            if 'errorTypes' not in backOff:
                continue
            if reason.check(*backOff['errorTypes']):
                logger.warning("Comet poll failed: %s",
                               reason.getErrorMessage())
                break
        else:
            errorState = 'other'
            log.err(reason, "Unexpected error while polling")

        backOff = self.backOffs[errorState]
        if self._errorState != errorState:
            self._errorState = errorState
            self._delay = backOff['initial']
        else:
            self._delay = min(backOff['max'], self._delay * backOff['factor'])

        self._toState('waiting')


    def _state_waiting(self):
        """
        Waiting to poll again.

        Wait for L{_delay} seconds.
        """
        log.msg("Polling again in %0.2f seconds" % (self._delay,))
        self._retryDelayedCall = self.reactor.callLater(self._delay,
                                                        self._retry)


    def _retry(self):
        self._retryDelayedCall = None
        self._toState('polling')

# vim: set expandtab:
