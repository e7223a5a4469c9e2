#!/usr/bin/env python3

import sys
import os
import os.path
def eprint(*args, **kwargs): print(*args, file=sys.stderr, **kwargs)

from analysis_resources import AnalysisResources
from cdta_utilities import unzip_file, CDTA_ZIPPED_SUFFIX
from dta_gen_tool_runner import get_dta_generator_info, DTAGeneratorConstants, USING_EXISTING_DECONMSN_RESULTS
from job_params import JOB_PARAMETERS_SECTION
from tool_runner_base import CLOSEOUT_SUCCESS, CLOSEOUT_FAILED, CLOSEOUT_NO_SETTINGS_FILE

#### Results directory of an earlier DeconMSn run is DTA_Gen_1_26_<DatasetID>
EXISTING_DTA_DIRECTORY_PREFIX = 'DTA_Gen_1_26_'


####################################################################################################
#### Resources for the DTA generation step
class DtaGenResources(AnalysisResources):

    ####################################################################################################
    #### Stage the instrument data (and any reusable DeconMSn results)
    def get_resources(self):

        raw_data_type_name = self.job_params.get_job_parameter('RawDataType', '')
        mgf_instrument_data = self.job_params.get_job_parameter('MGFInstrumentData', False)
        zipped_dta_file = None

        generator_type, _, error_message = get_dta_generator_info(self.job_params)
        if generator_type == DTAGeneratorConstants.Unknown:
            if error_message == '':
                error_message = "get_dta_generator_info reported an Unknown DTAGenerator type"
            self.log_error(error_message)
            return CLOSEOUT_NO_SETTINGS_FILE

        if mgf_instrument_data:
            file_to_find = self.dataset_name + '.mgf'
            if self.file_retriever.retrieve_file(file_to_find) is None:
                self.log_error(f"Instrument data not found: {file_to_find}")
                return CLOSEOUT_FAILED
            self.job_params.add_result_file_extension_to_skip('.mgf')

        else:
            if not self.retrieve_spectra(raw_data_type_name):
                return CLOSEOUT_FAILED

            if generator_type == DTAGeneratorConstants.DeconConsole:
                centroid_dtas = False
            else:
                centroid_dtas = self.job_params.get_job_parameter('CentroidDTAs', False)

            if centroid_dtas:
                zipped_dta_file = self.retrieve_existing_deconmsn_results()

        if zipped_dta_file is not None:
            pre_existing_zip = os.path.join(self.work_dir, os.path.splitext(os.path.basename(zipped_dta_file))[0] + '_PreExisting.zip')
            os.replace(zipped_dta_file, pre_existing_zip)
            if self.verbose >= 1:
                eprint(f"INFO: Unzipping file {os.path.basename(zipped_dta_file)}")
            if unzip_file(pre_existing_zip, self.work_dir, verbose=self.verbose) is not None:
                self.job_params.add_result_file_to_skip(os.path.basename(pre_existing_zip))

        return CLOSEOUT_SUCCESS


    ####################################################################################################
    #### Look for Dataset_dta.zip from an earlier DeconMSn job; returns the copied zip path or None
    def retrieve_existing_deconmsn_results(self):

        dataset_id = self.job_params.get_job_parameter('DatasetID', 0)
        existing_dir = self.file_retriever.find_directory(EXISTING_DTA_DIRECTORY_PREFIX + str(dataset_id))
        file_to_find = self.dataset_name + CDTA_ZIPPED_SUFFIX
        if existing_dir is None or not os.path.isfile(os.path.join(existing_dir, file_to_find)):
            return

        zipped_dta_file = self.file_retriever.retrieve_file(file_to_find, source_dir=existing_dir)
        if zipped_dta_file is None:
            return

        self.job_params.add_additional_parameter(JOB_PARAMETERS_SECTION, USING_EXISTING_DECONMSN_RESULTS, 'True')
        eprint(f"INFO: Found pre-existing DeconMSn results; will not re-run DeconMSn if they are valid")

        for suffix in [ '_profile.txt', '_DeconMSn_log.txt' ]:
            if os.path.isfile(os.path.join(existing_dir, self.dataset_name + suffix)):
                self.file_retriever.retrieve_file(self.dataset_name + suffix, source_dir=existing_dir)

        return zipped_dta_file
