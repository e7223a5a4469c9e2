#!/usr/bin/env python3

import sys
import json
def eprint(*args, **kwargs): print(*args, file=sys.stderr, **kwargs)


####################################################################################################
#### Event log class
class EventLog:
    """
    Records the warnings and errors of one job step in the same structure
    for every tool runner:

        metadata['state']    = { 'status', 'code', 'message' }
        metadata['problems'] = { 'warnings': { 'count', 'list', 'codes' },
                                 'errors':   { 'count', 'list', 'codes' } }

    The most recent error becomes the overall state. Events are also echoed to
    stderr when verbose >= 1 (errors are always echoed).
    """

    ####################################################################################################
    #### Constructor
    def __init__(self, verbose=None):

        #### Set verbosity
        if verbose is None: verbose = 0
        self.verbose = verbose

        self.create_template()


    ####################################################################################################
    #### Create a blank template
    def create_template(self):
        self.metadata = {
            'state': {
                'status': 'OK',
                'code': 'OK',
                'message': 'No problems yet',
            },
            'problems': {
                'warnings': { 'count': 0, 'list': [], 'codes': {} },
                'errors': { 'count': 0, 'list': [], 'codes': {} },
            },
        }


    ####################################################################################################
    #### Log a warning or error event
    def log_event(self, status, code, message):

        if status == 'WARNING':
            category = 'warnings'
        elif status == 'ERROR':
            category = 'errors'
        else:
            raise ValueError(f"Unrecognized event status '{status}'")

        #### Record the event
        full_message = f"{status}: [{code}]: {message}"
        problems = self.metadata['problems'][category]
        problems['count'] += 1
        problems['list'].append(full_message)
        if code not in problems['codes']:
            problems['codes'][code] = 1
        else:
            problems['codes'][code] += 1

        #### If this is an error, also update the overall state
        if status == 'ERROR':
            self.metadata['state']['status'] = status
            self.metadata['state']['code'] = code
            self.metadata['state']['message'] = message
            eprint(full_message)
        elif self.verbose >= 1:
            eprint(full_message)


    ####################################################################################################
    #### Convenience wrappers
    def log_warning(self, code, message):
        self.log_event('WARNING', code, message)

    def log_error(self, code, message):
        self.log_event('ERROR', code, message)


    ####################################################################################################
    #### Return the most recent error message or an empty string
    def get_error_message(self):
        if self.metadata['state']['status'] == 'ERROR':
            return self.metadata['state']['message']
        return ''


    ####################################################################################################
    #### Number of errors so far
    def n_errors(self):
        return self.metadata['problems']['errors']['count']


    ####################################################################################################
    #### Write the event log as JSON
    def store(self, filename):
        with open(filename, 'w') as outfile:
            json.dump(self.metadata, outfile, sort_keys=True, indent=2)
