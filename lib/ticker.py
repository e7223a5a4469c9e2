#!/usr/bin/env python3

import sys
import timeit
import time
def eprint(*args, **kwargs): print(*args, file=sys.stderr, **kwargs)


####################################################################################################
#### Ticker class
class Ticker:
    """
    Tells a polling loop when a periodic action is due. The clock is any
    callable returning seconds, so tests can drive it by hand. With
    fire_immediately=True the first call to is_due() returns True, otherwise
    the first interval is counted from construction (or reset()).
    """

    ####################################################################################################
    #### Constructor
    def __init__(self, interval, clock=None, fire_immediately=True):
        if clock is None: clock = timeit.default_timer
        self.interval = interval
        self.clock = clock
        self.fire_immediately = fire_immediately
        self.n_ticks = 0
        self.reset()


    ####################################################################################################
    #### Start counting again from now
    def reset(self):
        if self.fire_immediately:
            self.last_tick = None
        else:
            self.last_tick = self.clock()


    ####################################################################################################
    #### Return True if the interval has elapsed since the last tick, and record a tick if so
    def is_due(self):
        now = self.clock()
        if self.last_tick is None or now - self.last_tick >= self.interval:
            self.last_tick = now
            self.n_ticks += 1
            return True
        return False


    ####################################################################################################
    #### Seconds since the last tick
    def seconds_since_tick(self):
        if self.last_tick is None:
            return 0.0
        return self.clock() - self.last_tick


####################################################################################################
#### Simple manual clock for driving tickers and runners without real delays
class ManualClock:

    def __init__(self, start=0.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds

    def sleep(self, seconds):
        self.advance(seconds)


####################################################################################################
#### Default sleep function
def default_sleep(seconds):
    time.sleep(seconds)
