#!/usr/bin/env python3

import sys
import os
import os.path
def eprint(*args, **kwargs): print(*args, file=sys.stderr, **kwargs)

from dta_gen import INSTRUMENT_FILE_EXTENSIONS
from dta_gen import SF_RUNNING, SF_COMPLETE, SF_ERROR, SF_ABORTING, SF_SUCCESS, SF_FAILURE
from dta_gen_thermo_raw import DtaGenThermoRaw, MSCONVERT_FILENAME, DEFAULT_SCAN_STOP, adjust_scan_stop
from dta_gen_thermo_raw import PROGRESS_INTERVAL_SECONDS, STATUS_INTERVAL_SECONDS
from mgf_converter import MgfConverter
from ticker import Ticker

DEFAULT_CENTROID_PEAK_COUNT_TO_RETAIN = 250
MINIMUM_CENTROID_PEAK_COUNT_TO_RETAIN = 25


####################################################################################################
#### DTA generator that uses MSConvert
class DtaGenMSConvert(DtaGenThermoRaw):
    """
    Converts the instrument file to Dataset.mgf with MSConvert, then (unless
    DtaGenerator/ConvertMGFtoCDTA is False) converts the .mgf to
    Dataset_dta.txt. Set force_centroid_on to centroid regardless of the
    CentroidMGF job parameter.
    """

    ####################################################################################################
    #### Constructor
    def __init__(self, verbose=None):
        super().__init__(verbose=verbose)
        self.force_centroid_on = False


    ####################################################################################################
    #### msconvert.exe is in the ProteoWizard directory
    def construct_dta_tool_path(self):
        return os.path.join(self.mgr_params.get_param('ProteoWizardDir', ''), MSCONVERT_FILENAME)


    ####################################################################################################
    #### Background worker
    def make_dta_files_threaded(self):

        self.status = SF_RUNNING
        self.err_msg = ''
        self.progress = 10

        if not self.convert_raw_to_mgf(self.raw_data_type):
            if self.status != SF_ABORTING:
                self.results = SF_FAILURE
                self.status = SF_ERROR
            return

        self.progress = 75

        convert_to_cdta = self.job_params.get_job_parameter('DtaGenerator', 'ConvertMGFtoCDTA', True)
        if convert_to_cdta:
            if not self.convert_mgf_to_dta():
                if self.status != SF_ABORTING:
                    self.results = SF_FAILURE
                    self.status = SF_ERROR
                return

        self.results = SF_SUCCESS
        self.status = SF_COMPLETE


    ####################################################################################################
    #### Convert Dataset.mgf to Dataset_dta.txt, with scan= and cs= on the parent ion lines
    def convert_mgf_to_dta(self, minimum_ions_per_spectrum=0):
        mgf_converter = MgfConverter(self.work_dir, include_extra_info_on_parent_ion_line=True,
            minimum_ions_per_spectrum=minimum_ions_per_spectrum, verbose=self.verbose)
        success = mgf_converter.convert_mgf_to_dta(self.raw_data_type, self.dataset_name)
        if not success:
            self.err_msg = mgf_converter.error_message
        self.spectra_file_count = mgf_converter.spectra_count_written
        self.progress = 95
        return success


    ####################################################################################################
    #### Build the MSConvert argument list
    def build_msconvert_arguments(self, instrument_file, scan_stop, limiting_scan_range):

        centroid_mgf = self.job_params.get_job_parameter('CentroidMGF', True)
        peak_count_to_retain = self.job_params.get_job_parameter('DtaGenerator', 'CentroidPeakCountToRetain', 0)
        if peak_count_to_retain == 0:
            peak_count_to_retain = self.job_params.get_job_parameter('CentroidPeakCountToRetain', DEFAULT_CENTROID_PEAK_COUNT_TO_RETAIN)
        peak_count_minimum = self.job_params.get_job_parameter('DtaGenerator', 'CentroidPeakCountMinimum', 0)
        combine_ion_mobility_spectra = self.job_params.get_job_parameter('DtaGenerator', 'CombineIonMobilitySpectra', False)

        if self.force_centroid_on:
            centroid_mgf = True

        arguments = [ instrument_file ]

        if centroid_mgf:
            if peak_count_to_retain == 0:
                peak_count_to_retain = DEFAULT_CENTROID_PEAK_COUNT_TO_RETAIN
            elif peak_count_to_retain < MINIMUM_CENTROID_PEAK_COUNT_TO_RETAIN:
                peak_count_to_retain = MINIMUM_CENTROID_PEAK_COUNT_TO_RETAIN
            arguments += [ '--filter', 'peakPicking vendor mslevel=1-' ]
            arguments += [ '--filter', f"threshold count {peak_count_to_retain} most-intense" ]
            if peak_count_minimum > 0:
                arguments += [ '--filter', f"defaultArrayLength {peak_count_minimum}-" ]

        if limiting_scan_range:
            arguments += [ '--filter', f"scanNumber [1,{scan_stop}]" ]

        if combine_ion_mobility_spectra:
            precursor_tol = self.job_params.get_job_parameter('DtaGenerator', 'CombineIMSPrecursorTol', '0.005')
            scan_time_tol = self.job_params.get_job_parameter('DtaGenerator', 'CombineIMSScanTimeTol', '0.5')
            ion_mobility_tol = self.job_params.get_job_parameter('DtaGenerator', 'CombineIMSIonMobilityTol', '0.01')
            arguments.append('--combineIonMobilitySpectra')
            arguments += [ '--filter', "titleMaker <RunId>.<ScanNumber>.<ScanNumber>.<ChargeState> NativeID:'<Id>', IonMobility:'<IonMobility>'" ]
            arguments += [ '--filter', f"scanSumming precursorTol={precursor_tol} scanTimeTol={scan_time_tol} ionMobilityTol={ion_mobility_tol}" ]

        arguments += [ '--32', '--mgf', '-o', self.work_dir ]
        return arguments


    ####################################################################################################
    #### Run MSConvert to create Dataset.mgf
    def convert_raw_to_mgf(self, raw_data_type):

        if self.verbose >= 1:
            eprint(f"INFO: Creating .MGF file using MSConvert")

        if raw_data_type not in [ 'ThermoRawFile', 'mzXML', 'mzML', 'BrukerTOFTdf' ]:
            self.log_error(f"Raw data file type not supported: {raw_data_type}")
            return False

        instrument_file = os.path.join(self.work_dir, self.dataset_name + INSTRUMENT_FILE_EXTENSIONS[raw_data_type])
        self.instrument_file_name = os.path.basename(instrument_file)
        self.job_params.add_result_file_to_skip(self.instrument_file_name)

        scan_stop = DEFAULT_SCAN_STOP
        if raw_data_type == 'ThermoRawFile':
            self.max_scan_in_file = self.get_max_scan(instrument_file)
        else:
            self.max_scan_in_file = scan_stop
        if not self.check_max_scan():
            return False

        if self.max_scan_in_file > 0:
            scan_stop = adjust_scan_stop(scan_stop, self.max_scan_in_file)
            limiting_scan_range = scan_stop < self.max_scan_in_file
        else:
            limiting_scan_range = scan_stop < DEFAULT_SCAN_STOP
        self.num_scans = scan_stop

        arguments = self.build_msconvert_arguments(instrument_file, scan_stop, limiting_scan_range)
        if self.verbose >= 1:
            eprint(f"INFO: {self.dta_tool_name_loc} {' '.join(arguments)}")

        return self.run_converter(arguments, 'MSConvert', self.work_dir)


    ####################################################################################################
    #### Run a converter program, updating the status file while it runs
    def run_converter(self, arguments, name, run_dir):

        tool_name = os.path.splitext(os.path.basename(self.dta_tool_name_loc))[0]
        self.progress_ticker = Ticker(PROGRESS_INTERVAL_SECONDS, clock=self.clock)
        self.status_ticker = Ticker(STATUS_INTERVAL_SECONDS, clock=self.clock)
        self.cmd_runner = self.runner_factory(work_dir=run_dir, clock=self.clock, verbose=self.verbose)

        console_output_file = os.path.join(self.work_dir, f"{name}_ConsoleOutput.txt")
        success = self.cmd_runner.run_program(self.dta_tool_name_loc, arguments, name=name,
            console_output_file=console_output_file, loop_waiting=self.loop_waiting)
        if not success:
            self.log_dta_creation_stats('convert_raw_to_mgf', tool_name, "run_program returned false")
            self.err_msg = f"Error running {tool_name}"
            if self.abort_requested:
                self.status = SF_ABORTING
            return False

        if self.verbose >= 2:
            eprint(f"DEBUG: ... MGF file created using {name}")
        return True


    ####################################################################################################
    #### Progress comes from the phase markers in make_dta_files_threaded()
    def monitor_progress(self):
        return
