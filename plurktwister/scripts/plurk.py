# -*- test-case-name: plurktwister.test.test_script -*-
#
# Copyright (c) 2022  plurktwister contributors
# See LICENSE.txt for details

"""
Command line Plurk client.

Without a stored access token, the user is asked to authorize the client
first; the token is then saved in the key file.
"""

import logging
import sys
from datetime import datetime, timedelta, timezone

from twisted.internet import defer, task, threads
from twisted.python import log, usage

from plurktwister import render
from plurktwister.credentials import Credentials, defaultKeyFile
from plurktwister.error import Error
from plurktwister.plurk import CometFeed, CometMonitor


class Options(usage.Options):
    synopsis = "[options]"

    optFlags = [
        ['comet', 'c', "Print realtime updates until interrupted."],
        ['me', 'm', "Print the profile of the authenticated user."],
        ['timeline', 't', "Print plurks of the last 24 hours."],
        ['verbose', 'v', "Print full plurks (with --timeline)."],
        ['debug', None, "Log protocol state transitions."],
        ]

    optParameters = [
        ['key-file', 'k', None, "Path to the JSON key file."],
        ['consumer-key', None, None, "Write a new key file with this "
                                     "consumer key."],
        ['consumer-secret', None, None, "Consumer secret for the new key "
                                        "file."],
        ]

    def postOptions(self):
        if self['key-file'] is None:
            self['key-file'] = defaultKeyFile()
        if self['verbose'] and not self['timeline']:
            raise usage.UsageError("--verbose requires --timeline")
        if bool(self['consumer-key']) != bool(self['consumer-secret']):
            raise usage.UsageError("--consumer-key and --consumer-secret "
                                   "must be given together")



def setupLogging(debug):
    logging.basicConfig(level=logging.DEBUG if debug else logging.WARNING,
                        format="%(asctime)s %(levelname)s %(name)s: "
                               "%(message)s",
                        datefmt="%Y-%m-%d %H:%M:%S",
                        stream=sys.stderr)
    observer = log.PythonLoggingObserver('plurktwister')
    log.startLoggingWithObserver(observer.emit, setStdout=False)



def authorize(api, credentials, keyFile):
    """
    Run the out-of-band OAuth flow and save the access token.
    """
    def gotRequestToken(token):
        requestToken, requestSecret = token
        print("Please access to: %s" % api.authorizeURL(requestToken))
        d = threads.deferToThread(input, "Input pin: ")
        d.addCallback(lambda pin: api.getAccessToken(requestToken,
                                                     requestSecret,
                                                     pin.strip()))
        return d

    def gotAccessToken(token):
        credentials.token_key, credentials.token_secret = token
        credentials.save(keyFile)

    d = api.getRequestToken()
    d.addCallback(gotRequestToken)
    d.addCallback(gotAccessToken)
    return d



def printMe(api):
    def cb(user):
        print("%s (%s) id=%s" % (user.displayName(), user.nick_name, user.id))

    return api.me().addCallback(cb)



def printTimeline(api, verbose):
    since = datetime.now(timezone.utc) - timedelta(days=1)
    d = api.getPlurks(offset=since.strftime('%Y-%m-%dT%H:%M:%SZ'))
    d.addCallback(lambda result: render.printTimeline(result[0], result[1],
                                                      verbose=verbose))
    return d



def pollComet(reactor, api):
    """
    Print realtime updates until the reactor shuts down.
    """
    monitor = CometMonitor(api, render.ConsoleRenderer(api), reactor=reactor)
    reactor.addSystemEventTrigger('before', 'shutdown', monitor.stopService)
    print("Polling Comet...ctrl+c to exit")
    monitor.startService()
    return monitor.deferred



def main(reactor, *argv):
    config = Options()
    try:
        config.parseOptions(argv)
    except usage.UsageError as e:
        sys.stderr.write("%s\n%s\n" % (config, e))
        raise SystemExit(2)

    setupLogging(config['debug'])
    keyFile = config['key-file']

    if config['consumer-key']:
        credentials = Credentials(config['consumer-key'],
                                  config['consumer-secret'])
        credentials.save(keyFile)
    else:
        credentials = Credentials.load(keyFile)

    api = CometFeed(credentials.consumer_key, credentials.consumer_secret,
                    credentials.token_key, credentials.token_secret,
                    reactor=reactor)

    d = defer.succeed(None)
    if not credentials.hasToken():
        d.addCallback(lambda _: authorize(api, credentials, keyFile))

    if config['me']:
        d.addCallback(lambda _: printMe(api))
    elif config['comet']:
        d.addCallback(lambda _: pollComet(reactor, api))
    elif config['timeline']:
        d.addCallback(lambda _: printTimeline(api, config['verbose']))
    else:
        d.addCallback(lambda _: print(str(config)))
    return d



def run():
    """
    Console script entry point.
    """
    def failed(reason):
        reason.trap(Error)
        sys.stderr.write("plurk: %s\n" % (reason.getErrorMessage(),))
        raise SystemExit(1)

    def start(reactor, *argv):
        try:
            d = main(reactor, *argv)
        except Error as e:
            d = defer.fail(e)
        return d.addErrback(failed)

    task.react(start, sys.argv[1:])

# vim: set expandtab:
