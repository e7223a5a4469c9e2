#!/usr/bin/env python3

import sys
import os
import argparse
import os.path
import subprocess
import timeit
def eprint(*args, **kwargs): print(*args, file=sys.stderr, **kwargs)

from ticker import Ticker, default_sleep

#### Seconds between polls of a running program
DEFAULT_POLL_INTERVAL = 2


####################################################################################################
#### Program runner class
class ProgramRunner:
    """
    Launches an external program and waits for it, calling loop_waiting()
    between polls so that callers can parse progress files or update status.
    The clock and sleep functions are injectable; a runner can be aborted from
    a loop_waiting() callback or from another thread with abort_program_now().
    """

    ####################################################################################################
    #### Constructor
    def __init__(self, work_dir=None, poll_interval=None, clock=None, sleep=None, verbose=None):
        if poll_interval is None: poll_interval = DEFAULT_POLL_INTERVAL
        if clock is None: clock = timeit.default_timer
        if sleep is None: sleep = default_sleep
        self.work_dir = work_dir
        self.poll_interval = poll_interval
        self.clock = clock
        self.sleep = sleep

        self.exit_code = None
        self.error_message = ''
        self.console_output_file = None
        self.command_line = []
        self.abort_requested = False
        self.process = None
        self.runtime = 0.0

        #### Set verbosity
        if verbose is None: verbose = 0
        self.verbose = verbose


    ####################################################################################################
    #### Request that the running program be terminated
    def abort_program_now(self):
        self.abort_requested = True


    ####################################################################################################
    #### Run a program to completion. Returns True if the program exited with code 0
    def run_program(self, program, arguments, name=None, console_output_file=None, loop_waiting=None,
                    max_runtime_seconds=0, work_dir=None):

        if name is None: name = os.path.basename(program)
        if work_dir is None: work_dir = self.work_dir
        self.exit_code = None
        self.error_message = ''
        self.abort_requested = False
        self.console_output_file = console_output_file
        self.command_line = [ program ] + [ str(argument) for argument in arguments ]

        if self.verbose >= 1:
            eprint(f"INFO: Running {name}: {' '.join(self.command_line)}")

        if console_output_file is not None:
            outfile = open(console_output_file, 'w')
        else:
            outfile = subprocess.DEVNULL

        t0 = self.clock()
        try:
            try:
                self.process = subprocess.Popen(self.command_line, cwd=work_dir, stdout=outfile, stderr=subprocess.STDOUT)
            except OSError as error:
                self.error_message = f"Unable to start {name}: {error}"
                eprint(f"ERROR: {self.error_message}")
                return False

            while self.process.poll() is None:
                if loop_waiting is not None:
                    loop_waiting()
                if self.abort_requested:
                    self.error_message = f"{name} was aborted"
                    eprint(f"WARNING: Aborting {name}")
                    self.terminate()
                    break
                if max_runtime_seconds > 0 and self.clock() - t0 > max_runtime_seconds:
                    self.error_message = f"{name} exceeded the maximum runtime of {max_runtime_seconds} seconds"
                    eprint(f"ERROR: {self.error_message}")
                    self.terminate()
                    break
                self.sleep(self.poll_interval)

            self.exit_code = self.process.wait()

        finally:
            if console_output_file is not None:
                outfile.close()
            self.runtime = self.clock() - t0

        if self.error_message != '':
            return False

        if self.exit_code != 0:
            self.error_message = f"{name} returned a non-zero exit code: {self.exit_code}"
            eprint(f"ERROR: {self.error_message}")
            return False

        if self.verbose >= 1:
            eprint(f"INFO: {name} finished in {self.runtime:.2f} sec")
        return True


    ####################################################################################################
    #### Terminate the child process, killing it if it does not exit promptly
    def terminate(self):
        if self.process is None or self.process.poll() is not None:
            return
        self.process.terminate()
        try:
            self.process.wait(timeout=10)
        except subprocess.TimeoutExpired:
            self.process.kill()


    ####################################################################################################
    #### Read back the console output file
    def get_console_output(self):
        if self.console_output_file is None or not os.path.isfile(self.console_output_file):
            return ''
        with open(self.console_output_file, errors='replace') as infile:
            return infile.read()


####################################################################################################
#### For command-line usage
def main():

    argparser = argparse.ArgumentParser(description='Runs a program, polling it until it exits')
    argparser.add_argument('--console_output_file', action='store', help='File to capture the console output of the program')
    argparser.add_argument('--verbose', action='count', help='If set, print more information about ongoing processing' )
    argparser.add_argument('--version', action='version', version='%(prog)s 0.5')
    argparser.add_argument('program', type=str, help='Program to run')
    argparser.add_argument('arguments', type=str, nargs='*', help='Arguments to pass to the program')
    params = argparser.parse_args()

    #### Set verbose
    verbose = params.verbose
    if verbose is None: verbose = 1

    ticker = Ticker(10)
    runner = ProgramRunner(verbose=verbose)

    def report():
        if ticker.is_due() and verbose >= 1:
            eprint(f"INFO: Still waiting for {params.program}")

    success = runner.run_program(params.program, params.arguments, console_output_file=params.console_output_file,
        loop_waiting=report)
    if not success:
        sys.exit(1)


#### For command line usage
if __name__ == "__main__": main()
