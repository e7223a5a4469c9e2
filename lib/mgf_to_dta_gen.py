#!/usr/bin/env python3

import sys
import os
import os.path
def eprint(*args, **kwargs): print(*args, file=sys.stderr, **kwargs)

from dta_gen import DtaGen, CDTA_EXTENSION
from dta_gen import SF_RUNNING, SF_COMPLETE, SF_ERROR, SF_ABORTING, SF_SUCCESS, SF_FAILURE, SF_NO_FILES_CREATED, SF_ABORTED
from mgf_converter import MgfConverter

MGF_TO_DTA_TOOL_NAME = 'mgf_converter.py'


####################################################################################################
#### DTA generator for datasets whose instrument data is already an .mgf file
class MgfToDtaGenMainProcess(DtaGen):

    ####################################################################################################
    #### Copy in the job context; the "tool" is the converter module itself
    def setup(self, params, tool_runner):
        super().setup(params, tool_runner)
        self.dta_tool_name_loc = os.path.join(os.path.dirname(os.path.abspath(__file__)), MGF_TO_DTA_TOOL_NAME)


    ####################################################################################################
    #### Dataset.mgf must be in the working directory
    def init_setup(self):
        if not super().init_setup():
            return False
        if not os.path.isfile(os.path.join(self.work_dir, self.dataset_name + '.mgf')):
            self.err_msg = f"Data file {self.dataset_name}.mgf not found in working directory"
            return False
        return True


    ####################################################################################################
    #### Background worker
    def make_dta_files_threaded(self):

        self.status = SF_RUNNING
        if not self.make_dta_files_from_mgf():
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
                self.results = SF_SUCCESS
            self.status = SF_COMPLETE


    ####################################################################################################
    #### Convert the .mgf file using the filter settings in the job parameters
    def make_dta_files_from_mgf(self):

        if self.verbose >= 1:
            eprint(f"INFO: Converting .MGF file to _DTA.txt")

        mgf_converter = MgfConverter(self.work_dir,
            scan_start=self.job_params.get_job_parameter('ScanStart', 0),
            scan_stop=self.job_params.get_job_parameter('ScanStop', 0),
            minimum_parent_ion_mz=self.job_params.get_job_parameter('MWStart', 0.0),
            guesstimate_charge_for_all_spectra=self.job_params.get_job_parameter('GuesstimateChargeForAllSpectra', False),
            force_charge_addn_for_predefined_2plus_or_3plus=self.job_params.get_job_parameter('ForceChargeAddnForPredefined2PlusOr3Plus', False),
            maximum_ions_per_spectrum=self.job_params.get_job_parameter('MaximumIonsPerSpectrum', 0),
            verbose=self.verbose)
        mgf_converter.threshold_ion_pct_for_single_charge = self.job_params.get_job_parameter('ThresholdIonPctForSingleCharge',
            mgf_converter.threshold_ion_pct_for_single_charge)
        mgf_converter.threshold_ion_pct_for_double_charge = self.job_params.get_job_parameter('ThresholdIonPctForDoubleCharge',
            mgf_converter.threshold_ion_pct_for_double_charge)

        #### The instrument data is plain MGF, so the titles are used as they are
        success = mgf_converter.convert_mgf_to_dta('MGFInstrumentData', self.dataset_name)
        if not success and self.err_msg == '':
            self.err_msg = mgf_converter.error_message
        self.spectra_file_count = mgf_converter.spectra_count_written
        self.progress = 95

        if not success:
            self.results = SF_FAILURE
            self.status = SF_ERROR
            return False

        if self.abort_requested:
            self.status = SF_ABORTING
        return self.status not in [ SF_ABORTING, SF_ERROR ]


    ####################################################################################################
    #### Dataset_dta.txt must exist and not be empty
    def verify_dta_creation(self):
        cdta_file = os.path.join(self.work_dir, self.dataset_name + CDTA_EXTENSION)
        if not os.path.isfile(cdta_file):
            self.err_msg = "_DTA.txt file not created"
            return False
        if os.path.getsize(cdta_file) == 0:
            self.err_msg = "_DTA.txt file is empty"
            return False
        return True
