#!/usr/bin/env python3

import sys
import os
import argparse
import os.path
import glob
import json
def eprint(*args, **kwargs): print(*args, file=sys.stderr, **kwargs)

from cdta_merger import CdtaMerger
from cdta_utilities import concatenate_dta_files, zip_file, CDTA_SUFFIX, CDTA_ZIPPED_SUFFIX
from dta_gen import DtaGenParams, get_raw_data_type
from dta_gen import SF_STARTING, SF_RUNNING, SF_ERROR, SF_SUCCESS, SF_FAILURE, SF_NO_FILES_CREATED, SF_ABORTED
from dta_gen_msconvert import DtaGenMSConvert
from dta_gen_raw_converter import DtaGenRawConverter
from dta_gen_thermo_raw import DtaGenThermoRaw, MSCONVERT_FILENAME, DECON_CONSOLE_FILENAME, EXTRACT_MSN_FILENAME
from dta_gen_thermo_raw import DECONMSN_FILENAME, RAWCONVERTER_FILENAME
from job_params import JobParameters
from mgf_to_dta_gen import MgfToDtaGenMainProcess
from progress_monitors import validate_deconmsn_results
from ticker import default_sleep
from tool_runner_base import ToolRunnerBase, CLOSEOUT_SUCCESS, CLOSEOUT_FAILED, CLOSEOUT_NO_DTA_FILES

#### Progress at which the second (centroiding) MSConvert pass starts
CENTROID_CDTA_PROGRESS_START = 70

#### Seconds between checks on a running DTA generator
DEFAULT_POLL_INTERVAL = 5

#### Job parameter set by the resources step when DeconMSn results from an earlier job were retrieved
USING_EXISTING_DECONMSN_RESULTS = 'Using_existing_DeconMSn_Results'

DATA_FILE_EXTENSIONS_TO_DELETE = [ '.raw', '.mzXML', '.mzML', '.mgf' ]


####################################################################################################
#### The DTA generators
class DTAGeneratorConstants:
    Unknown = 0
    ExtractMSn = 1
    DeconMSn = 2
    MSConvert = 3
    MGFtoDTA = 4
    DeconConsole = 5
    RawConverter = 6

    NAMES = { 0: 'Unknown', 1: 'ExtractMSn', 2: 'DeconMSn', 3: 'MSConvert', 4: 'MGFtoDTA', 5: 'DeconConsole', 6: 'RawConverter' }


####################################################################################################
#### Standard message for a settings parameter that is not defined
def notify_missing_parameter(job_params, parameter_name):
    settings_file = job_params.get_job_parameter('SettingsFileName', '?UnknownSettingsFile?')
    tool_name = job_params.get_job_parameter('ToolName', '?UnknownToolName?')
    return f"Settings file {settings_file} for tool {tool_name} does not have parameter {parameter_name} defined"


####################################################################################################
#### Decide which DTA generator to use. Returns (generator, concatenate_dtas, error_message)
def get_dta_generator_info(job_params):

    dta_generator = job_params.get_job_parameter('DtaGenerator', '')
    raw_data_type_name = job_params.get_job_parameter('RawDataType', '')
    mgf_instrument_data = job_params.get_job_parameter('MGFInstrumentData', False)

    if raw_data_type_name == '':
        return DTAGeneratorConstants.Unknown, True, notify_missing_parameter(job_params, 'RawDataType')

    raw_data_type = get_raw_data_type(raw_data_type_name)

    if mgf_instrument_data:
        return DTAGeneratorConstants.MGFtoDTA, False, ''

    if raw_data_type == 'ThermoRawFile':
        generator_name = dta_generator.lower()
        if generator_name == MSCONVERT_FILENAME:
            return DTAGeneratorConstants.MSConvert, False, ''
        if generator_name == DECON_CONSOLE_FILENAME.lower():
            return DTAGeneratorConstants.DeconConsole, False, ''
        if generator_name == EXTRACT_MSN_FILENAME:
            return DTAGeneratorConstants.ExtractMSn, True, ''
        if generator_name == DECONMSN_FILENAME.lower():
            return DTAGeneratorConstants.DeconMSn, False, ''
        if generator_name == RAWCONVERTER_FILENAME.lower():
            return DTAGeneratorConstants.RawConverter, False, ''
        if dta_generator == '':
            return DTAGeneratorConstants.Unknown, False, notify_missing_parameter(job_params, 'DtaGenerator')
        return DTAGeneratorConstants.Unknown, False, f"Unknown DTAGenerator for Thermo Raw files: {dta_generator}"

    if raw_data_type == 'mzML':
        if dta_generator.lower() == MSCONVERT_FILENAME:
            return DTAGeneratorConstants.MSConvert, False, ''
        return DTAGeneratorConstants.Unknown, True, f"Invalid DTAGenerator for mzML files: {dta_generator}"

    if raw_data_type == 'AgilentDFolder':
        return DTAGeneratorConstants.MGFtoDTA, True, ''

    if raw_data_type == 'BrukerTOFTdf':
        if dta_generator.lower() == MSCONVERT_FILENAME:
            return DTAGeneratorConstants.MSConvert, False, ''
        if dta_generator == '':
            return DTAGeneratorConstants.Unknown, False, notify_missing_parameter(job_params, 'DtaGenerator')
        return DTAGeneratorConstants.Unknown, False, "Bruker analysis.tdf files can only be converted to .mgf using MSConvert"

    return DTAGeneratorConstants.Unknown, True, f"Unsupported data type for DTA generation: {raw_data_type}"


####################################################################################################
#### DTA generation tool runner
class DtaGenToolRunner(ToolRunnerBase):
    """
    Creates the concatenated DTA file (Dataset_dta.txt, zipped) for a
    dataset. The generator is picked from the job parameters. Extract_msn
    output is concatenated, and when CentroidDTAs is set the spectra are
    regenerated with MSConvert centroiding and merged back against the
    original parent ion information.
    """

    ####################################################################################################
    #### Constructor
    def __init__(self, job_params, mgr_params, status_file=None, work_dir=None, transfer_dir=None, runner_factory=None,
                 max_scan_reader=None, clock=None, sleep=None, poll_interval=None, verbose=None):
        super().__init__(job_params, mgr_params, status_file=status_file, work_dir=work_dir, transfer_dir=transfer_dir,
            clock=clock, verbose=verbose)
        if sleep is None: sleep = default_sleep
        if poll_interval is None: poll_interval = DEFAULT_POLL_INTERVAL
        self.runner_factory = runner_factory
        self.max_scan_reader = max_scan_reader
        self.sleep = sleep
        self.poll_interval = poll_interval

        self.centroid_dtas = False
        self.concatenate_dtas = False
        self.dta_count = 0
        self.merge_result = None


    ####################################################################################################
    #### Run the whole step
    def run_tool(self):

        result = self.create_msms_spectra()
        if result != CLOSEOUT_SUCCESS:
            self.copy_failed_results_to_archive_directory()
            self.update_final_status(CLOSEOUT_FAILED)
            return CLOSEOUT_FAILED

        result = self.delete_data_file()
        if result != CLOSEOUT_SUCCESS:
            self.update_final_status(result)
            return result

        self.job_params.add_result_file_extension_to_skip(CDTA_SUFFIX)
        self.job_params.add_result_file_extension_to_skip('.dta')
        self.job_params.add_result_file_extension_to_skip('DeconMSn_progress.txt')
        self.job_params.add_result_file_to_keep('lcq_dta.txt')

        if self.copy_results_to_transfer_directory() is None:
            self.update_final_status(CLOSEOUT_FAILED)
            return CLOSEOUT_FAILED

        self.set_progress(100, force=True)
        self.update_final_status(CLOSEOUT_SUCCESS)
        return CLOSEOUT_SUCCESS


    ####################################################################################################
    #### Make the spectra, then concatenate, centroid and zip as needed
    def create_msms_spectra(self):

        result = self.make_spectra_files()
        if result != CLOSEOUT_SUCCESS:
            return result

        if self.concatenate_dtas:
            result = self.concat_spectra_files()
            if result != CLOSEOUT_SUCCESS:
                return result

        if self.centroid_dtas:
            result = self.centroid_cdta()
            if result != CLOSEOUT_SUCCESS:
                return result

        return self.zip_concatenated_dta_file()


    ####################################################################################################
    #### Instantiate the generator for this job. Returns (generator_type, generator or None)
    def get_dta_generator(self):

        generator_type, self.concatenate_dtas, error_message = get_dta_generator_info(self.job_params)

        if generator_type == DTAGeneratorConstants.MGFtoDTA:
            return generator_type, MgfToDtaGenMainProcess(verbose=self.verbose)
        if generator_type == DTAGeneratorConstants.MSConvert:
            return generator_type, DtaGenMSConvert(verbose=self.verbose)
        if generator_type == DTAGeneratorConstants.DeconConsole:
            self.log_error("DeconConsole is obsolete and should no longer be used")
            return DTAGeneratorConstants.Unknown, None
        if generator_type in [ DTAGeneratorConstants.ExtractMSn, DTAGeneratorConstants.DeconMSn ]:
            return generator_type, DtaGenThermoRaw(verbose=self.verbose)
        if generator_type == DTAGeneratorConstants.RawConverter:
            return generator_type, DtaGenRawConverter(verbose=self.verbose)

        if error_message == '':
            error_message = "get_dta_generator_info reported an Unknown DTAGenerator type"
        self.log_error(error_message)
        return DTAGeneratorConstants.Unknown, None


    ####################################################################################################
    #### Parameters handed to each generator
    def get_dta_gen_params(self):
        return DtaGenParams(self.job_params, self.mgr_params, self.status_file, self.work_dir, self.dataset_name,
            runner_factory=self.runner_factory, max_scan_reader=self.max_scan_reader, clock=self.clock, verbose=self.verbose)


    ####################################################################################################
    #### Path to msconvert.exe
    def get_msconvert_app_path(self):
        return os.path.join(self.mgr_params.get_param('ProteoWizardDir', ''), MSCONVERT_FILENAME)


    ####################################################################################################
    #### Pick, configure and run the DTA generator
    def make_spectra_files(self):

        if self.verbose >= 1:
            eprint(f"INFO: Making spectra files, job {self.job}")

        generator_type, spectra_gen = self.get_dta_generator()
        if generator_type == DTAGeneratorConstants.Unknown:
            return CLOSEOUT_FAILED

        self.centroid_dtas = self.job_params.get_job_parameter('CentroidDTAs', False)

        spectra_gen.setup(self.get_dta_gen_params(), self)

        if self.store_dta_tool_version_info(spectra_gen.dta_tool_name_loc, generator_type) is None:
            self.log_error(f"Aborting since store_dta_tool_version_info failed for {spectra_gen.dta_tool_name_loc}")
            return CLOSEOUT_FAILED

        if generator_type == DTAGeneratorConstants.DeconMSn and self.centroid_dtas:
            if self.job_params.get_job_parameter(USING_EXISTING_DECONMSN_RESULTS, False):
                is_valid, message = validate_deconmsn_results(self.work_dir, self.dataset_name, verbose=self.verbose)
                if is_valid:
                    self.set_progress(100, force=True)
                    return CLOSEOUT_SUCCESS
                self.log_warning(f"Cannot use pre-existing DeconMSn results: {message}")

        result = self.start_and_wait_for_dta_generator(spectra_gen, 'make_spectra_files', False)
        self.dta_count = spectra_gen.spectra_file_count
        return result


    ####################################################################################################
    #### Start a generator and poll it until it finishes
    def start_and_wait_for_dta_generator(self, dta_generator, calling_function, second_pass):

        status = dta_generator.start()
        if status == SF_ERROR:
            self.log_error(f"Error starting spectra processor: {dta_generator.err_msg}")
            return CLOSEOUT_FAILED

        if self.verbose >= 1:
            eprint(f"INFO: DtaGenToolRunner.{calling_function}: Spectra generation started")

        while dta_generator.status in [ SF_STARTING, SF_RUNNING ] and not dta_generator.async_result.ready():
            self.set_progress(self.scale_generator_progress(dta_generator.progress, second_pass), dta_generator.spectra_file_count)
            self.sleep(self.poll_interval)

        dta_generator.wait()
        self.set_progress(self.scale_generator_progress(dta_generator.progress, second_pass), dta_generator.spectra_file_count,
            force=True)

        if dta_generator.results == SF_FAILURE:
            self.log_error(f"Error making DTA files in {calling_function}: {dta_generator.err_msg}")
            return CLOSEOUT_FAILED
        if dta_generator.results == SF_ABORTED:
            self.log_error(f"DTA generation aborted in {calling_function}")
            return CLOSEOUT_FAILED
        if dta_generator.results == SF_NO_FILES_CREATED:
            self.log_error(f"No spectra files created in {calling_function}")
            return CLOSEOUT_NO_DTA_FILES
        if dta_generator.results != SF_SUCCESS:
            self.log_error(f"Spectra generation ended without a result in {calling_function}: {dta_generator.err_msg}")
            return CLOSEOUT_FAILED

        if self.verbose >= 2:
            eprint(f"DEBUG: DtaGenToolRunner.{calling_function}: Spectra generation completed")
        return CLOSEOUT_SUCCESS


    ####################################################################################################
    #### Map generator progress onto the step progress
    def scale_generator_progress(self, progress, second_pass):
        if second_pass:
            return CENTROID_CDTA_PROGRESS_START + progress * (100 - CENTROID_CDTA_PROGRESS_START) / 100
        if self.centroid_dtas:
            return progress * CENTROID_CDTA_PROGRESS_START / 100
        return progress


    ####################################################################################################
    #### Concatenate the .dta files into Dataset_dta.txt
    def concat_spectra_files(self):

        if len(glob.glob(os.path.join(self.work_dir, '*.dta'))) == 0:
            self.log_error("No .DTA files were created")
            return CLOSEOUT_NO_DTA_FILES

        if self.verbose >= 1:
            eprint(f"INFO: Concatenating spectra files, job {self.job}")

        try:
            concatenate_dta_files(self.work_dir, self.dataset_name, verbose=self.verbose)
        except OSError as error:
            self.log_error(f"Error packaging results: {error}")
            return CLOSEOUT_FAILED
        return CLOSEOUT_SUCCESS


    ####################################################################################################
    #### Regenerate the spectra with centroiding and merge them with the original parent ion data
    def centroid_cdta(self):

        cdta_file = os.path.join(self.work_dir, self.dataset_name + CDTA_SUFFIX)
        if not os.path.isfile(cdta_file):
            self.log_error(f"File not found in CentroidCDTA: {os.path.basename(cdta_file)}")
            return CLOSEOUT_NO_DTA_FILES

        cdta_file_original = os.path.join(self.work_dir, self.dataset_name + '_DTA_Original.txt')
        try:
            os.replace(cdta_file, cdta_file_original)
        except OSError as error:
            self.log_error(f"Error renaming the original _DTA.txt file in CentroidCDTA: {error}")
            return CLOSEOUT_FAILED
        self.job_params.add_result_file_to_skip(os.path.basename(cdta_file_original))

        msconvert_runner = DtaGenMSConvert(verbose=self.verbose)
        msconvert_runner.setup(self.get_dta_gen_params(), self)
        msconvert_runner.force_centroid_on = True
        result = self.start_and_wait_for_dta_generator(msconvert_runner, 'centroid_cdta', True)
        if result != CLOSEOUT_SUCCESS:
            return result

        if not os.path.isfile(cdta_file):
            self.log_error(f"File not found in CentroidCDTA (after calling DtaGenMSConvert): {os.path.basename(cdta_file)}")
            return CLOSEOUT_NO_DTA_FILES

        cdta_file_centroided = os.path.join(self.work_dir, self.dataset_name + '_DTA_Centroided.txt')
        try:
            os.replace(cdta_file, cdta_file_centroided)
        except OSError as error:
            self.log_error(f"Error renaming the centroided _DTA.txt file in CentroidCDTA: {error}")
            return CLOSEOUT_FAILED
        self.job_params.add_result_file_to_skip(os.path.basename(cdta_file_centroided))

        if not self.merge_cdtas(cdta_file_original, cdta_file_centroided, cdta_file):
            if self.message == '':
                self.log_error("MergeCDTAs returned false in CentroidCDTA")
            return CLOSEOUT_FAILED
        return CLOSEOUT_SUCCESS


    ####################################################################################################
    #### Merge the parent ion CDTA with the centroided fragment ion CDTA
    def merge_cdtas(self, cdta_with_parent_ion_data, cdta_with_frag_ion_data, cdta_file_final):

        merger = CdtaMerger(clock=self.clock, verbose=self.verbose)
        self.merge_result = merger.merge_cdtas(cdta_with_parent_ion_data, cdta_with_frag_ion_data, cdta_file_final)
        for warning in self.merge_result.warnings:
            self.log_warning(warning, code='MergeCDTAs')
        if self.merge_result.status != 'OK':
            self.log_error(self.merge_result.error, code=self.merge_result.code)
            return False
        return True


    ####################################################################################################
    #### Zip Dataset_dta.txt, or Dataset.mgf when the MGF file is the final product
    def zip_concatenated_dta_file(self):

        convert_to_cdta = self.job_params.get_job_parameter('DtaGenerator', 'ConvertMGFtoCDTA', True)
        if convert_to_cdta:
            input_file_name = self.dataset_name + CDTA_SUFFIX
            zip_file_name = self.dataset_name + CDTA_ZIPPED_SUFFIX
        else:
            input_file_name = self.dataset_name + '.mgf'
            zip_file_name = self.dataset_name + '_mgf.zip'

        if self.verbose >= 1:
            eprint(f"INFO: Zipping concatenated spectra file, job {self.job}")

        input_file = os.path.join(self.work_dir, input_file_name)
        if not os.path.isfile(input_file):
            self.log_warning(f"Error: Unable to find spectrum file {input_file_name}")
            if self.message == '':
                self.message = f"Unable to find spectrum file {input_file_name}"
            return CLOSEOUT_FAILED

        zip_filename = os.path.join(self.work_dir, zip_file_name)
        try:
            result = zip_file(input_file, zip_filename, verbose=self.verbose)
        except OSError as error:
            self.log_error(f"Exception zipping spectrum file, job {self.job}: {error}")
            return CLOSEOUT_FAILED

        if result is None or not os.path.isfile(zip_filename) or os.path.getsize(zip_filename) <= 0:
            self.log_error(f"Error zipping spectrum file, job {self.job}")
            return CLOSEOUT_FAILED
        return CLOSEOUT_SUCCESS


    ####################################################################################################
    #### Keep the bulky spectra out of the failed results
    def copy_failed_results_to_archive_directory(self):
        self.job_params.add_result_file_to_skip(self.dataset_name + CDTA_ZIPPED_SUFFIX)
        self.job_params.add_result_file_to_skip(self.dataset_name + CDTA_SUFFIX)
        self.job_params.add_result_file_extension_to_skip('.dta')
        return super().copy_failed_results_to_archive_directory()


    ####################################################################################################
    #### Delete the instrument data files from the working directory
    def delete_data_file(self):
        if self.verbose >= 2:
            eprint(f"DEBUG: DtaGenToolRunner.delete_data_file, executing method")
        try:
            for extension in DATA_FILE_EXTENSIONS_TO_DELETE:
                for filename in glob.glob(os.path.join(self.work_dir, '*' + extension)):
                    if self.verbose >= 2:
                        eprint(f"DEBUG: DtaGenToolRunner.delete_data_file, deleting file {filename}")
                    os.remove(filename)
        except OSError as error:
            self.log_error(f"Error deleting .raw file, job {self.job}: {error}")
            return CLOSEOUT_FAILED
        return CLOSEOUT_SUCCESS


    ####################################################################################################
    #### Record the programs used to make the spectra
    def store_dta_tool_version_info(self, dta_generator_app_path, generator_type):

        generator_name = DTAGeneratorConstants.NAMES[generator_type]
        if not os.path.isfile(dta_generator_app_path):
            self.log_error(f"DtaGenerator not found: {dta_generator_app_path}")
            return self.store_tool_version_info('DTA_Gen', 'Unknown')

        tool_files = [ dta_generator_app_path ]
        if generator_type == DTAGeneratorConstants.DeconMSn:
            tool_dir = os.path.dirname(dta_generator_app_path)
            if os.path.isfile(os.path.join(tool_dir, 'DeconEngineV2.dll')):
                tool_files.append(os.path.join(tool_dir, 'DeconEngineV2.dll'))
            else:
                tool_files.append(os.path.join(tool_dir, 'DeconMSnEngine.dll'))

        if self.centroid_dtas:
            tool_files.append(self.get_msconvert_app_path())

        return self.store_tool_version_info('DTA_Gen', generator_name, tool_files=tool_files)


####################################################################################################
#### For command-line usage
def main():

    argparser = argparse.ArgumentParser(description='Reports which DTA generator a job parameters file selects')
    argparser.add_argument('--verbose', action='count', help='If set, print more information about ongoing processing' )
    argparser.add_argument('--version', action='version', version='%(prog)s 0.5')
    argparser.add_argument('job_params', type=str, help='Job parameters XML file')
    params = argparser.parse_args()

    job_params = JobParameters(verbose=params.verbose)
    if job_params.read_file(params.job_params) is None:
        sys.exit(1)

    generator_type, concatenate_dtas, error_message = get_dta_generator_info(job_params)
    print(json.dumps({
        'generator': DTAGeneratorConstants.NAMES[generator_type],
        'concatenate_dtas': concatenate_dtas,
        'error_message': error_message,
    }, indent=2, sort_keys=True))


#### For command line usage
if __name__ == "__main__": main()
