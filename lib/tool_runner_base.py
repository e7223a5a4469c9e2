#!/usr/bin/env python3

import sys
import os
import os.path
import glob
import shutil
import datetime
def eprint(*args, **kwargs): print(*args, file=sys.stderr, **kwargs)

from event_log import EventLog
from job_params import STEP_PARAMETERS_SECTION
from status_file import StatusFile, STATUS_RUNNING, STATUS_COMPLETE, STATUS_FAILED
from ticker import Ticker

#### Close-out codes returned by run_tool() and get_resources()
CLOSEOUT_SUCCESS = 'SUCCESS'
CLOSEOUT_FAILED = 'FAILED'
CLOSEOUT_NO_DTA_FILES = 'NO_DTA_FILES'
CLOSEOUT_NO_SETTINGS_FILE = 'NO_SETTINGS_FILE'
CLOSEOUT_FILE_NOT_FOUND = 'FILE_NOT_FOUND'
CLOSEOUT_NO_DATA = 'NO_DATA'

TOOL_VERSION_INFO_PREFIX = 'Tool_Version_Info_'
TOOL_VERSION_INFO_SECTION_HEADER = 'ToolVersionInfo:'
DATE_TIME_FORMAT = '%Y-%m-%d %I:%M:%S %p'

#### Seconds between status file updates from set_progress()
STATUS_UPDATE_INTERVAL_SECONDS = 5


####################################################################################################
#### Tool runner base class
class ToolRunnerBase:
    """
    Shared machinery for the step tool runners: the injected job and manager
    parameters, the status file, an EventLog of warnings and errors, progress
    reporting and the copying of result files out of the working directory.
    """

    ####################################################################################################
    #### Constructor
    def __init__(self, job_params, mgr_params, status_file=None, work_dir=None, transfer_dir=None, clock=None, verbose=None):

        #### Set verbosity
        if verbose is None: verbose = 0
        self.verbose = verbose

        if status_file is None: status_file = StatusFile(verbose=verbose)
        if work_dir is None: work_dir = os.getcwd()

        self.job_params = job_params
        self.mgr_params = mgr_params
        self.status_file = status_file
        self.work_dir = work_dir
        self.transfer_dir = transfer_dir
        self.clock = clock

        self.dataset_name = job_params.get_dataset_name()
        self.job = job_params.get_job_number()
        self.event_log = EventLog(verbose=verbose)
        self.message = ''
        self.progress = 0.0
        self.spectrum_count = 0
        self.results_directory = None
        self.status_ticker = Ticker(STATUS_UPDATE_INTERVAL_SECONDS, clock=clock)


    ####################################################################################################
    #### Record an error; the first error message also becomes the close-out message
    def log_error(self, message, code='ToolRunnerError'):
        if self.message == '':
            self.message = message
        self.event_log.log_error(code, message)


    ####################################################################################################
    #### Record a warning
    def log_warning(self, message, code='ToolRunnerWarning'):
        self.event_log.log_warning(code, message)


    ####################################################################################################
    #### Update the progress, writing the status file at most every few seconds unless forced
    def set_progress(self, progress, spectrum_count=None, force=False):
        self.progress = progress
        if spectrum_count is not None:
            self.spectrum_count = spectrum_count
        if force or self.status_ticker.is_due():
            self.status_file.update_and_write(STATUS_RUNNING, self.progress, self.spectrum_count)


    ####################################################################################################
    #### Write the final status once the step is done
    def update_final_status(self, closeout_code):
        if closeout_code == CLOSEOUT_SUCCESS:
            status = STATUS_COMPLETE
        else:
            status = STATUS_FAILED
        self.status_file.update_and_write(status, self.progress, self.spectrum_count, current_operation=self.message)


    ####################################################################################################
    #### Write the Tool_Version_Info_<Tool>.txt file in the working directory
    def store_tool_version_info(self, tool_name, tool_version_info, tool_files=None):
        """
        tool_version_info is a '; ' delimited list of versions. Each path in
        tool_files that exists is appended as 'name: modification date'.
        """

        entries = [ info for info in tool_version_info.split('; ') if info != '' ]
        if tool_files is not None:
            for tool_file in tool_files:
                if os.path.exists(tool_file):
                    modified = datetime.datetime.fromtimestamp(os.path.getmtime(tool_file))
                    entries.append(f"{os.path.basename(tool_file)}: {modified.strftime(DATE_TIME_FORMAT)}")
                else:
                    self.log_warning(f"Tool file not found: {tool_file}")

        filename = os.path.join(self.work_dir, TOOL_VERSION_INFO_PREFIX + tool_name + '.txt')
        try:
            with open(filename, 'w') as outfile:
                print(f"Date: {datetime.datetime.now().strftime(DATE_TIME_FORMAT)}", file=outfile)
                print(f"Dataset: {self.dataset_name}", file=outfile)
                print(f"Job: {self.job}", file=outfile)
                print(f"Step: {self.job_params.get_job_parameter(STEP_PARAMETERS_SECTION, 'Step', 0)}", file=outfile)
                print(f"Tool: {self.job_params.get_job_parameter('StepTool', tool_name)}", file=outfile)
                print(TOOL_VERSION_INFO_SECTION_HEADER, file=outfile)
                for entry in entries:
                    print(entry, file=outfile)
        except OSError as error:
            self.log_error(f"Exception saving tool version info: {error}")
            return
        return 'OK'


    ####################################################################################################
    #### Delete files in the working directory with any of the given extensions
    def delete_files_with_extensions(self, extensions):
        n_deleted = 0
        for extension in extensions:
            for filename in glob.glob(os.path.join(self.work_dir, '*' + extension)):
                if not os.path.isfile(filename):
                    continue
                try:
                    os.remove(filename)
                    n_deleted += 1
                except OSError as error:
                    self.log_warning(f"Unable to delete {os.path.basename(filename)}: {error}")
        if self.verbose >= 1:
            eprint(f"INFO: Deleted {n_deleted} files with extensions {', '.join(extensions)}")
        return n_deleted


    ####################################################################################################
    #### Name of the results directory for this job step
    def get_results_directory_name(self):
        name = self.job_params.get_job_parameter('OutputFolderName', '')
        if name == '':
            name = f"{self.job_params.get_job_parameter('StepTool', 'Results')}_{self.job}"
        return name


    ####################################################################################################
    #### Copy the files in the working directory that are not skipped to target_dir
    def copy_work_dir_files(self, target_dir):
        os.makedirs(target_dir, exist_ok=True)
        copied_files = []
        for filename in sorted(os.listdir(self.work_dir)):
            source_file = os.path.join(self.work_dir, filename)
            if not os.path.isfile(source_file):
                continue
            if self.job_params.skip_result_file(filename):
                if self.verbose >= 2:
                    eprint(f"DEBUG: Not copying {filename}")
                continue
            shutil.copy2(source_file, os.path.join(target_dir, filename))
            copied_files.append(filename)
        return copied_files


    ####################################################################################################
    #### Copy the results to <transfer_dir>/<dataset>/<results directory>
    def copy_results_to_transfer_directory(self):

        if self.transfer_dir is None or self.transfer_dir == '':
            self.log_error("Transfer directory path not defined")
            return

        self.results_directory = os.path.join(self.transfer_dir, self.dataset_name, self.get_results_directory_name())
        try:
            copied_files = self.copy_work_dir_files(self.results_directory)
        except OSError as error:
            self.log_error(f"Error copying results to the transfer directory: {error}")
            self.copy_failed_results_to_archive_directory()
            return

        if self.verbose >= 1:
            eprint(f"INFO: Copied {len(copied_files)} result files to {self.results_directory}")
        return 'OK'


    ####################################################################################################
    #### Copy what there is of the results to the failed results directory, if one is configured
    def copy_failed_results_to_archive_directory(self):

        archive_dir = self.mgr_params.get_param('FailedResultsFolderPath', '')
        if archive_dir == '':
            self.log_warning("Manager parameter FailedResultsFolderPath is not defined; failed results not archived")
            return

        target_dir = os.path.join(archive_dir, self.get_results_directory_name())
        try:
            copied_files = self.copy_work_dir_files(target_dir)
        except OSError as error:
            self.log_warning(f"Error copying failed results to {target_dir}: {error}")
            return

        eprint(f"WARNING: Copied {len(copied_files)} files from the failed job to {target_dir}")
        return 'OK'
