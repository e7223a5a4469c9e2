#!/usr/bin/env python3

import sys
import os
import os.path
import glob
from multiprocessing.pool import ThreadPool
def eprint(*args, **kwargs): print(*args, file=sys.stderr, **kwargs)

from program_runner import ProgramRunner

#### Process status of a spectra file generator
SF_STARTING = 'SF_STARTING'
SF_RUNNING = 'SF_RUNNING'
SF_COMPLETE = 'SF_COMPLETE'
SF_ERROR = 'SF_ERROR'
SF_ABORTING = 'SF_ABORTING'

#### Process results of a spectra file generator
SF_SUCCESS = 'SF_SUCCESS'
SF_FAILURE = 'SF_FAILURE'
SF_NO_FILES_CREATED = 'SF_NO_FILES_CREATED'
SF_ABORTED = 'SF_ABORTED'

#### Raw data type names used in job parameters, and the types they map to
RAW_DATA_TYPES = {
    'dot_d_folders': 'AgilentDFolder',
    'zipped_s_folders': 'ZippedSFolders',
    'dot_raw_folder': 'MicromassRawFolder',
    'dot_raw_files': 'ThermoRawFile',
    'dot_wiff_files': 'AgilentQStarWiffFile',
    'dot_uimf_files': 'UIMF',
    'dot_mzxml_files': 'mzXML',
    'dot_mzml_files': 'mzML',
    'bruker_ft': 'BrukerFTFolder',
    'bruker_maldi_spot': 'BrukerMALDISpot',
    'bruker_maldi_imaging': 'BrukerMALDIImaging',
    'bruker_tof_baf': 'BrukerTOFBaf',
    'bruker_tof_tdf': 'BrukerTOFTdf',
}

#### Instrument file extension for each raw data type that is a single file or .d directory
INSTRUMENT_FILE_EXTENSIONS = {
    'ThermoRawFile': '.raw',
    'mzXML': '.mzXML',
    'mzML': '.mzML',
    'BrukerTOFTdf': '.d',
    'AgilentDFolder': '.d',
}

CDTA_EXTENSION = '_dta.txt'

#### Files with other extensions are removed by delete_non_dos_files()
VALID_FILE_EXTENSIONS = [ '.dta', '.txt', '.csv', '.raw', '.params', '.wiff', '.xml', '.mgf' ]


####################################################################################################
#### Map a RawDataType job parameter value to a raw data type, 'Unknown' if not recognized
def get_raw_data_type(raw_data_type_name):
    if raw_data_type_name is None:
        return 'Unknown'
    return RAW_DATA_TYPES.get(raw_data_type_name.lower(), 'Unknown')


####################################################################################################
#### Parameters passed to DtaGen.setup()
class DtaGenParams:

    def __init__(self, job_params, mgr_params, status_file, work_dir, dataset_name, runner_factory=None,
                 max_scan_reader=None, clock=None, verbose=None):
        if runner_factory is None: runner_factory = ProgramRunner
        if verbose is None: verbose = 0
        self.job_params = job_params
        self.mgr_params = mgr_params
        self.status_file = status_file
        self.work_dir = work_dir
        self.dataset_name = dataset_name
        self.runner_factory = runner_factory
        self.max_scan_reader = max_scan_reader
        self.clock = clock
        self.verbose = verbose


####################################################################################################
#### DTA generator base class
class DtaGen:
    """
    Base class of the spectra file generators. start() launches
    make_dta_files_threaded() on a single background worker; the caller polls
    status and progress until the status leaves SF_STARTING / SF_RUNNING and
    then reads results and err_msg.
    """

    ####################################################################################################
    #### Constructor
    def __init__(self, verbose=None):
        self.err_msg = ''
        self.work_dir = ''
        self.dataset_name = ''
        self.raw_data_type = 'Unknown'
        self.dta_tool_name_loc = ''
        self.status = None
        self.results = None
        self.job_params = None
        self.mgr_params = None
        self.status_file = None
        self.runner_factory = ProgramRunner
        self.max_scan_reader = None
        self.clock = None
        self.tool_runner = None
        self.spectra_file_count = 0
        self.progress = 0.0
        self.abort_requested = False
        self.cmd_runner = None
        self.pool = None
        self.async_result = None

        #### Set verbosity
        if verbose is None: verbose = 0
        self.verbose = verbose


    ####################################################################################################
    #### Copy in the job context
    def setup(self, params, tool_runner):
        self.verbose = params.verbose
        self.job_params = params.job_params
        self.mgr_params = params.mgr_params
        self.status_file = params.status_file
        self.work_dir = params.work_dir
        self.dataset_name = params.dataset_name
        self.runner_factory = params.runner_factory
        self.max_scan_reader = params.max_scan_reader
        self.clock = params.clock
        self.tool_runner = tool_runner
        self.raw_data_type = get_raw_data_type(self.job_params.get_job_parameter('RawDataType', ''))
        self.progress = 0.0


    ####################################################################################################
    #### Point the generator at a different program
    def update_dta_tool_name_loc(self, program_path):
        self.dta_tool_name_loc = program_path


    ####################################################################################################
    #### Ask the generator to stop
    def abort(self):
        self.abort_requested = True
        if self.cmd_runner is not None:
            self.cmd_runner.abort_program_now()
        return SF_ABORTING


    ####################################################################################################
    #### Check the mandatory collaborators. Subclasses add their own checks
    def init_setup(self):
        if self.mgr_params is None:
            self.err_msg = "Manager parameters not specified"
            return False
        if self.job_params is None:
            self.err_msg = "Job parameters not specified"
            return False
        if self.status_file is None:
            self.err_msg = "Status tools object not set"
            return False
        return True


    ####################################################################################################
    #### Verify setup, then run make_dta_files_threaded() on the background worker
    def start(self):

        self.status = SF_STARTING
        if not self.init_setup():
            self.results = SF_FAILURE
            self.status = SF_ERROR
            return self.status

        self.status = SF_RUNNING
        self.pool = ThreadPool(1)
        self.async_result = self.pool.apply_async(self.run_worker)
        self.pool.close()
        return self.status


    ####################################################################################################
    #### Body of the background worker
    def run_worker(self):
        try:
            self.make_dta_files_threaded()
        except Exception as error:
            self.log_error(f"Exception creating spectra files with {os.path.basename(self.dta_tool_name_loc)}: {error}")
            self.results = SF_FAILURE
            self.status = SF_ERROR


    ####################################################################################################
    #### Wait for the background worker to finish
    def wait(self):
        if self.pool is None:
            return
        self.pool.join()
        self.pool = None


    ####################################################################################################
    #### Subclasses create the spectra here and leave status and results set
    def make_dta_files_threaded(self):
        raise NotImplementedError(f"{self.__class__.__name__} does not implement make_dta_files_threaded()")


    ####################################################################################################
    #### Record an error message
    def log_error(self, message):
        self.err_msg = message
        eprint(f"ERROR: {message}")


    ####################################################################################################
    #### Verify that a file or directory exists, setting err_msg if not
    def verify_file_exists(self, filename):
        if os.path.isfile(filename):
            self.err_msg = ''
            return True
        self.err_msg = f"File {filename} not found"
        return False

    def verify_directory_exists(self, directory):
        if os.path.isdir(directory):
            self.err_msg = ''
            return True
        self.err_msg = f"Directory {directory} not found"
        return False


    ####################################################################################################
    #### Remove files whose extensions the DTA tools never legitimately write
    def delete_non_dos_files(self):
        """
        extract_msn.exe and lcq_dta.exe sometimes leave behind files with
        garbled names; anything without a known extension is deleted.
        """
        for filename in os.listdir(self.work_dir):
            path = os.path.join(self.work_dir, filename)
            if not os.path.isfile(path):
                continue
            extension = os.path.splitext(filename)[1].lower()
            if extension in VALID_FILE_EXTENSIONS:
                continue
            try:
                os.remove(path)
            except OSError as error:
                self.err_msg = f"Error removing non-DOS files: {error}"
                return False
        return True


    ####################################################################################################
    #### Log an error running the DTA tool along with the state of the .dta files in the working directory
    def log_dta_creation_stats(self, procedure_name, dta_tool_name, error_message):

        if procedure_name is None: procedure_name = 'DtaGen.??'
        if dta_tool_name is None: dta_tool_name = 'Unknown DTA Tool'
        if error_message is None: error_message = 'Unknown error'

        eprint(f"ERROR: {procedure_name}, Error running {dta_tool_name}; {error_message}")

        dta_files = glob.glob(os.path.join(self.work_dir, '*.dta'))
        valid_files = [ dta_file for dta_file in dta_files if os.path.getsize(dta_file) > 0 ]
        blank_files = [ dta_file for dta_file in dta_files if os.path.getsize(dta_file) == 0 ]

        if len(dta_files) > 0:
            if len(valid_files) > 0:
                newest_file = max(valid_files, key=os.path.getmtime)
                eprint(f"INFO: {procedure_name}, The most recent .Dta file created is {os.path.basename(newest_file)} "
                    f"with size {os.path.getsize(newest_file)} bytes")
            else:
                eprint(f"WARNING: {procedure_name}, No valid (non zero length) .Dta files were created")
            if len(blank_files) > 0:
                newest_blank_file = max(blank_files, key=os.path.getmtime)
                eprint(f"INFO: {procedure_name}, The most recent blank (zero-length) .Dta file created is "
                    f"{os.path.basename(newest_blank_file)}")

        eprint(f"INFO: {procedure_name}, {dta_tool_name} created {len(dta_files)} .dta files")
        return len(dta_files)
