#!/usr/bin/env python3

import sys
import os
import os.path
def eprint(*args, **kwargs): print(*args, file=sys.stderr, **kwargs)

from dta_gen import SF_RUNNING, SF_COMPLETE, SF_ERROR, SF_ABORTING, SF_SUCCESS, SF_FAILURE
from dta_gen_msconvert import DtaGenMSConvert
from dta_gen_thermo_raw import RAWCONVERTER_FILENAME


####################################################################################################
#### DTA generator that uses RawConverter
class DtaGenRawConverter(DtaGenMSConvert):
    """
    Converts a Thermo .raw file to Dataset.mgf with RawConverter.exe, run
    from its own directory, then converts the .mgf to Dataset_dta.txt keeping
    only spectra with at least IonCounts/IonCount ions.
    """

    ####################################################################################################
    #### RawConverter.exe is in RawConverterProgLoc
    def construct_dta_tool_path(self):
        return os.path.join(self.mgr_params.get_param('RawConverterProgLoc', ''), RAWCONVERTER_FILENAME)


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

        minimum_ions = self.job_params.get_job_parameter('IonCounts', 'IonCount', 0)
        if not self.convert_mgf_to_dta(minimum_ions_per_spectrum=minimum_ions):
            if self.status != SF_ABORTING:
                self.results = SF_FAILURE
                self.status = SF_ERROR
            return

        self.results = SF_SUCCESS
        self.status = SF_COMPLETE


    ####################################################################################################
    #### Run RawConverter to create Dataset.mgf
    def convert_raw_to_mgf(self, raw_data_type):

        if self.verbose >= 1:
            eprint(f"INFO: Creating .MGF file using RawConverter")

        if raw_data_type != 'ThermoRawFile':
            self.err_msg = f"Raw data file type not supported: {raw_data_type}"
            return False

        raw_file = os.path.join(self.work_dir, self.dataset_name + '.raw')
        self.instrument_file_name = os.path.basename(raw_file)
        self.job_params.add_result_file_to_skip(self.instrument_file_name)

        raw_converter_dir = os.path.dirname(os.path.abspath(self.dta_tool_name_loc))
        arguments = [ raw_file, '--mgf' ]
        if self.verbose >= 1:
            eprint(f"INFO: {self.dta_tool_name_loc} {' '.join(arguments)}")

        return self.run_converter(arguments, 'RawConverter', raw_converter_dir)
