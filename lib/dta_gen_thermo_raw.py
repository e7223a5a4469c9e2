#!/usr/bin/env python3

import sys
import os
import os.path
import glob
def eprint(*args, **kwargs): print(*args, file=sys.stderr, **kwargs)

from dta_gen import DtaGen, INSTRUMENT_FILE_EXTENSIONS, CDTA_EXTENSION
from dta_gen import SF_RUNNING, SF_COMPLETE, SF_ERROR, SF_ABORTING, SF_SUCCESS, SF_FAILURE, SF_NO_FILES_CREATED, SF_ABORTED
from progress_monitors import parse_deconmsn_progress_file, get_dta_file_progress, DECONMSN_PROGRESS_SUFFIX
from status_file import STATUS_RUNNING
from ticker import Ticker

DECONMSN_FILENAME = 'DeconMSn.exe'
EXTRACT_MSN_FILENAME = 'extract_msn.exe'
MSCONVERT_FILENAME = 'msconvert.exe'
DECON_CONSOLE_FILENAME = 'DeconConsole.exe'
RAWCONVERTER_FILENAME = 'RawConverter.exe'

DEFAULT_SCAN_STOP = 99999999
CONSOLE_OUTPUT_FILENAME = 'DeconMSn_ConsoleOutput.txt'

#### Scans per ExtractMSn call when the manager asks for looping
LOOPING_CHUNK_SIZE = 25000

#### Seconds between progress checks and between status file updates while the tool runs
PROGRESS_INTERVAL_SECONDS = 15
STATUS_INTERVAL_SECONDS = 5


####################################################################################################
#### Clamp the scan stop to the maximum scan in the file
def adjust_scan_stop(scan_stop, max_scan_in_file):
    if max_scan_in_file > 0:
        if scan_stop == 999999 and scan_stop < max_scan_in_file:
            scan_stop = max_scan_in_file
        if scan_stop > max_scan_in_file:
            scan_stop = max_scan_in_file
    return scan_stop


####################################################################################################
#### DTA generator for Thermo .raw files using DeconMSn or ExtractMSn
class DtaGenThermoRaw(DtaGen):
    """
    Runs DeconMSn.exe (which writes Dataset_dta.txt directly) or
    extract_msn.exe (which writes one .dta file per spectrum) over the .raw
    file, once per requested charge state and optionally in chunks of scans.
    The maximum scan number comes from the injected max_scan_reader, since
    reading vendor files is left to the caller.
    """

    ####################################################################################################
    #### Constructor
    def __init__(self, verbose=None):
        super().__init__(verbose=verbose)
        self.instrument_file_name = ''
        self.max_scan_in_file = 0
        self.num_scans = 0
        self.running_extract_msn = False
        self.progress_ticker = None
        self.status_ticker = None


    ####################################################################################################
    #### Copy in the job context and work out the tool path
    def setup(self, params, tool_runner):
        super().setup(params, tool_runner)
        self.dta_tool_name_loc = self.construct_dta_tool_path()


    ####################################################################################################
    #### extract_msn.exe lives in lcqdtaloc; DeconMSn.exe in XcalDLLPath
    def construct_dta_tool_path(self):
        dta_gen_program = self.job_params.get_job_parameter('DtaGenerator', '')
        if dta_gen_program.lower() == EXTRACT_MSN_FILENAME:
            return os.path.join(self.mgr_params.get_param('lcqdtaloc', ''), dta_gen_program)
        return os.path.join(self.mgr_params.get_param('XcalDLLPath', ''), dta_gen_program)


    ####################################################################################################
    #### Verify the instrument data and the tool before starting
    def init_setup(self):
        if self.verbose >= 1:
            eprint(f"INFO: {self.__class__.__name__}.init_setup: Initializing DTA generator setup")
        if not super().init_setup():
            return False
        if not self.verify_raw_file_exists(self.work_dir, self.dataset_name):
            return False
        if not self.verify_file_exists(self.dta_tool_name_loc):
            return False
        self.instrument_file_name = self.dataset_name + '.raw'
        return True


    ####################################################################################################
    #### The instrument file must be in the working directory; a .mgf file is also accepted
    def verify_raw_file_exists(self, work_dir, dataset_name):

        if self.raw_data_type == 'BrukerTOFTdf':
            if os.path.isdir(os.path.join(work_dir, dataset_name + '.d')):
                self.err_msg = ''
                return True
            self.log_error(f"Instrument directory not found in working directory for dataset {dataset_name}")
            return False

        if self.raw_data_type not in [ 'ThermoRawFile', 'mzXML', 'mzML' ]:
            self.log_error(f"Unsupported data type: {self.raw_data_type}")
            return False

        extension = INSTRUMENT_FILE_EXTENSIONS[self.raw_data_type]
        self.job_params.add_result_file_to_skip(dataset_name + extension)
        if os.path.isfile(os.path.join(work_dir, dataset_name + extension)):
            self.err_msg = ''
            return True
        if os.path.isfile(os.path.join(work_dir, dataset_name + '.mgf')):
            self.err_msg = ''
            return True

        self.log_error(f"Instrument data file not found in working directory for dataset {dataset_name}")
        return False


    ####################################################################################################
    #### Maximum scan number in the instrument file, or 0 if it cannot be determined
    def get_max_scan(self, instrument_file):
        if self.max_scan_reader is None or not os.path.exists(instrument_file):
            return 0
        try:
            max_scan = self.max_scan_reader(instrument_file)
        except (OSError, ValueError) as error:
            eprint(f"ERROR: Error determining the max scan number in {os.path.basename(instrument_file)}: {error}")
            return 0
        if self.verbose >= 2:
            eprint(f"DEBUG: Max scan for {os.path.basename(instrument_file)} is {max_scan}")
        return max_scan


    ####################################################################################################
    #### Check the maximum scan; returns False only when it is unusable
    def check_max_scan(self):
        if self.max_scan_in_file == 0:
            eprint(f"WARNING: Warning: unable to get MaxScan; MaxScan is 0")
            return True
        if self.max_scan_in_file < 0:
            self.log_error(f"Unknown error getting number of scans; MaxScan = {self.max_scan_in_file}")
            return False
        return True


    ####################################################################################################
    #### Background worker: make the files, then decide the results
    def make_dta_files_threaded(self):

        self.status = SF_RUNNING
        if not self.make_dta_files():
            if self.status != SF_ABORTING:
                self.results = SF_FAILURE
                self.status = SF_ERROR

        if not self.delete_non_dos_files():
            if self.status != SF_ABORTING:
                self.results = SF_FAILURE
                self.status = SF_ERROR

        if self.status == SF_ABORTING:
            self.results = SF_ABORTED
        elif self.status == SF_ERROR:
            self.results = SF_FAILURE
        else:
            if not self.verify_dta_creation():
                self.results = SF_NO_FILES_CREATED
            else:
                self.job_params.add_result_file_to_skip(CONSOLE_OUTPUT_FILENAME)
                self.results = SF_SUCCESS
            self.status = SF_COMPLETE


    ####################################################################################################
    #### Build the argument list for one call of DeconMSn or ExtractMSn
    def build_arguments(self, ion_count, charge, scan_start, scan_stop, max_intermediate_scans, mw_lower, mw_upper, mass_tol):
        arguments = [ f"-I{ion_count}", '-G1' ]
        if charge > 0:
            arguments.append(f"-C{charge}")
        arguments += [ f"-F{scan_start}", f"-L{scan_stop}" ]
        if self.running_extract_msn:
            arguments.append(f"-S{max_intermediate_scans}")
        arguments += [ f"-B{mw_lower}", f"-T{mw_upper}", f"-M{mass_tol}", f"-D{self.work_dir}" ]
        if not self.running_extract_msn:
            arguments += [ '-XCDTA', '-Progress' ]
        arguments.append(os.path.join(self.work_dir, self.instrument_file_name))
        return arguments


    ####################################################################################################
    #### Run the tool once per charge state and scan chunk
    def make_dta_files(self):

        tool_name = os.path.splitext(os.path.basename(self.dta_tool_name_loc))[0]
        if self.verbose >= 1:
            eprint(f"INFO: Creating DTA files using {os.path.basename(self.dta_tool_name_loc)}")

        scan_start = self.job_params.get_job_parameter('ScanControl', 'ScanStart', 1)
        scan_stop = self.job_params.get_job_parameter('ScanControl', 'ScanStop', DEFAULT_SCAN_STOP)
        max_intermediate_scans = self.job_params.get_job_parameter('MaxIntermediateScansWhenGrouping', 1)
        mw_lower = self.job_params.get_job_parameter('MWControl', 'MWStart', '200')
        mw_upper = self.job_params.get_job_parameter('MWControl', 'MWStop', '5000')
        ion_count = self.job_params.get_job_parameter('IonCounts', 'IonCount', '35')
        mass_tol = self.job_params.get_job_parameter('MassTol', 'MassTol', '3')
        create_default_charges = self.job_params.get_job_parameter('Charges', 'CreateDefaultCharges', True)
        explicit_charge_start = self.job_params.get_job_parameter('Charges', 'ExplicitChargeStart', 0)
        explicit_charge_end = self.job_params.get_job_parameter('Charges', 'ExplicitChargeEnd', 0)

        raw_file = os.path.join(self.work_dir, os.path.splitext(self.instrument_file_name)[0] + '.raw')
        self.max_scan_in_file = self.get_max_scan(raw_file)
        if not self.check_max_scan():
            return False
        scan_stop = adjust_scan_stop(scan_stop, self.max_scan_in_file)
        self.num_scans = scan_stop - scan_start + 1

        self.running_extract_msn = EXTRACT_MSN_FILENAME in self.dta_tool_name_loc.lower()
        if self.running_extract_msn:
            console_output_file = None
        else:
            console_output_file = os.path.join(self.work_dir, CONSOLE_OUTPUT_FILENAME)
        looping = self.running_extract_msn and self.mgr_params.get_param('UseDTALooping', False)

        self.cmd_runner = self.runner_factory(work_dir=self.work_dir, clock=self.clock, verbose=self.verbose)
        self.progress_ticker = Ticker(PROGRESS_INTERVAL_SECONDS, clock=self.clock)
        self.status_ticker = Ticker(STATUS_INTERVAL_SECONDS, clock=self.clock)

        if create_default_charges:
            charge = 0
        else:
            charge = explicit_charge_start

        while charge <= explicit_charge_end and not self.abort_requested:
            if (charge == 0 and create_default_charges) or charge > 0:
                chunk_start = scan_start
                if looping and scan_stop > chunk_start + LOOPING_CHUNK_SIZE:
                    chunk_stop = chunk_start + LOOPING_CHUNK_SIZE
                else:
                    chunk_stop = scan_stop

                while chunk_start <= scan_stop:
                    if self.abort_requested:
                        self.status = SF_ABORTING
                        break

                    arguments = self.build_arguments(ion_count, charge, chunk_start, chunk_stop, max_intermediate_scans,
                        mw_lower, mw_upper, mass_tol)
                    if self.verbose >= 1:
                        eprint(f"INFO: {self.dta_tool_name_loc} {' '.join(arguments)}")

                    success = self.cmd_runner.run_program(self.dta_tool_name_loc, arguments, name='DTA_LCQ',
                        console_output_file=console_output_file, loop_waiting=self.loop_waiting)
                    if not success:
                        self.log_dta_creation_stats(f"{self.__class__.__name__}.make_dta_files", tool_name,
                            "run_program returned false")
                        self.log_error(f"Error running {tool_name}")
                        return False

                    chunk_start = chunk_stop + 1
                    chunk_stop = min(chunk_start + LOOPING_CHUNK_SIZE, scan_stop)

            if charge == 0:
                if explicit_charge_start <= 0 or explicit_charge_end <= 0:
                    break
                charge = explicit_charge_start
            else:
                charge += 1

        if self.abort_requested:
            self.status = SF_ABORTING

        self.monitor_progress()

        if self.status == SF_ABORTING:
            self.log_dta_creation_stats(f"{self.__class__.__name__}.make_dta_files", tool_name, "status = SF_ABORTING")
            return False
        if self.status == SF_ERROR:
            self.log_dta_creation_stats(f"{self.__class__.__name__}.make_dta_files", tool_name, "status = SF_ERROR")
            return False
        return True


    ####################################################################################################
    #### Update progress and spectra count from the files the tool has written
    def monitor_progress(self):
        if self.running_extract_msn:
            progress, dta_file_count = get_dta_file_progress(self.work_dir, self.max_scan_in_file)
            self.spectra_file_count = dta_file_count
            if progress is not None:
                self.progress = progress
        else:
            progress_file = os.path.join(self.work_dir, self.dataset_name + DECONMSN_PROGRESS_SUFFIX)
            percent_complete, spectra_processed = parse_deconmsn_progress_file(progress_file)
            if percent_complete is not None:
                self.progress = percent_complete
            if spectra_processed is not None:
                self.spectra_file_count = spectra_processed


    ####################################################################################################
    #### Called by the program runner on each poll
    def loop_waiting(self):
        if self.abort_requested:
            self.cmd_runner.abort_program_now()
        if self.progress_ticker.is_due():
            self.monitor_progress()
        if self.status_ticker.is_due():
            self.status_file.update_and_write(STATUS_RUNNING, self.progress, self.spectra_file_count)


    ####################################################################################################
    #### ExtractMSn must have written .dta files; DeconMSn must have written Dataset_dta.txt
    def verify_dta_creation(self):
        if self.running_extract_msn:
            if len(glob.glob(os.path.join(self.work_dir, '*.dta'))) < 1:
                self.log_error("No dta files created")
                return False
        else:
            if not os.path.isfile(os.path.join(self.work_dir, self.dataset_name + CDTA_EXTENSION)):
                self.log_error("_dta.txt file was not created")
                return False
        return True
