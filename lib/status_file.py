#!/usr/bin/env python3

import sys
import os
import os.path
import json
import datetime
def eprint(*args, **kwargs): print(*args, file=sys.stderr, **kwargs)

STATUS_RUNNING = 'Running'
STATUS_COMPLETE = 'Complete'
STATUS_FAILED = 'Failed'


####################################################################################################
#### Status file class
class StatusFile:
    """
    Status tracker for a running job step. Each update is kept in memory and,
    when a filename is given, written out as JSON for the parent process.
    """

    ####################################################################################################
    #### Constructor
    def __init__(self, filename=None, verbose=None):
        self.filename = filename
        self.status = {
            'status': STATUS_RUNNING,
            'progress': 0.0,
            'spectrum_count': 0,
            'current_operation': '',
            'last_update': None,
        }
        self.n_updates = 0

        #### Set verbosity
        if verbose is None: verbose = 0
        self.verbose = verbose


    ####################################################################################################
    #### Record a new status and write the file
    def update_and_write(self, status=None, progress=None, spectrum_count=None, current_operation=None):
        if status is not None:
            self.status['status'] = status
        if progress is not None:
            self.status['progress'] = round(float(progress), 2)
        if spectrum_count is not None:
            self.status['spectrum_count'] = spectrum_count
        if current_operation is not None:
            self.status['current_operation'] = current_operation
        self.status['last_update'] = datetime.datetime.now().isoformat(timespec='seconds')
        self.n_updates += 1

        if self.verbose >= 2:
            eprint(f"DEBUG: Status {self.status['status']}, progress {self.status['progress']}%, "
                f"{self.status['spectrum_count']} spectra")

        if self.filename is not None:
            self.write()


    ####################################################################################################
    #### Write the status as JSON
    def write(self):
        temp_filename = self.filename + '.tmp'
        with open(temp_filename, 'w') as outfile:
            json.dump(self.status, outfile, sort_keys=True, indent=2)
        os.replace(temp_filename, self.filename)
