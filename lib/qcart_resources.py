#!/usr/bin/env python3

import sys
import os
import re
import argparse
import os.path
import time
import hashlib
import timeit
def eprint(*args, **kwargs): print(*args, file=sys.stderr, **kwargs)

from lxml import etree

from analysis_resources import AnalysisResources
from job_params import JobParameters, ManagerParameters, JOB_PARAMETERS_SECTION
from qc_metrics_database import QcMetricsDatabase
from ticker import default_sleep
from tool_runner_base import CLOSEOUT_SUCCESS, CLOSEOUT_FAILED, CLOSEOUT_FILE_NOT_FOUND

#### Job parameters shared with the QC-ART tool runner
JOB_PARAMETER_QCART_BASELINE_DATASET_NAMES_AND_JOBS = 'QC-ART_Baseline_Dataset_NamesAndJobs'
JOB_PARAMETER_QCART_BASELINE_RESULTS_CACHE_FOLDER = 'QC-ART_Baseline_Results_Cache_Folder_Path'
JOB_PARAMETER_QCART_BASELINE_METADATA_FILENAME = 'QC-ART_Baseline_Metadata_File_Name'
JOB_PARAMETER_QCART_BASELINE_METADATA_LOCKFILE = 'QC-ART_Baseline_Metadata_LockFilePath'
JOB_PARAMETER_QCART_BASELINE_RESULTS_FILENAME = 'QC-ART_Baseline_Results_File_Name'
JOB_PARAMETER_QCART_PROJECT_NAME = 'QC-ART_Project_Name'

SMAQC_DATA_FILE_NAME = 'SMAQC_Data.csv'
REPORTER_IONS_FILE_SUFFIX = '_ReporterIons.txt'
QCART_PROCESSING_SCRIPT_NAME = 'QC-ART_Processing_Script.R'
QCART_RESULTS_FILE_SUFFIX = '_QC-ART.txt'
NEW_BASELINE_DATASETS_METADATA_FILE = 'NewBaselineDatasets_Metadata.csv'
NEW_BASELINE_DATASETS_CACHE_FILE = 'NewBaselineDatasets_Data_Cache.csv'
DEFAULT_R_SCRIPT_NAME = 'QC_ART_2015-11-11.R'

LOCK_FILE_SUFFIX = '.lock'
LOCK_FILE_POLL_SECONDS = 5
LOCK_FILE_MAX_WAIT_MINUTES = 60

#### Template tokens look like {$WORKING_DIRECTORY_PATH}
TEMPLATE_TOKEN_REGEX = re.compile(r'\{\$([^}]+)\}')

#### SCX fraction: _SET_31_16rr_ gives 16; the letters cover names like SET_32_22a
SCX_FRACTION_REGEX = re.compile(r'_SET_\d+_(\d+)[a-z-]*_', re.IGNORECASE)


####################################################################################################
#### Return the SCX fraction number in a dataset name, or 0 if there is none
def extract_fraction_from_dataset_name(dataset_name):
    match = SCX_FRACTION_REGEX.search(dataset_name)
    if match is None:
        return 0
    return int(match.group(1))


####################################################################################################
#### Key identifying a set of baseline datasets: FirstJob_LastJob_Count_<8 hex chars of MD5>
def compute_baseline_metadata_key(baseline_datasets):
    text_to_hash = ''.join([ f"{name}{baseline_datasets[name]}" for name in sorted(baseline_datasets) ])
    md5_hash = hashlib.md5(text_to_hash.encode('utf-8')).hexdigest()
    jobs = baseline_datasets.values()
    return f"{min(jobs)}_{max(jobs)}_{len(baseline_datasets)}_{md5_hash[:8]}"


####################################################################################################
#### Name of the cached baseline metadata file for a key
def get_baseline_metadata_file_name(baseline_metadata_key):
    return f"QCART_Cache_{baseline_metadata_key}.xml"


####################################################################################################
#### R wants forward slashes and a trailing slash
def to_unix_folder_path(folder_path):
    unix_path = folder_path.replace('\\', '/')
    if unix_path.endswith('/'):
        return unix_path
    return unix_path + '/'


####################################################################################################
#### "message for A", "message for A or B", "message for A or the other N datasets"
def format_message_for_datasets(message, dataset_names):
    dataset_names = list(dataset_names)
    if len(dataset_names) == 1:
        return f"{message} for {dataset_names[0]}"
    if len(dataset_names) == 2:
        return f"{message} for {dataset_names[0]} or {dataset_names[1]}"
    return f"{message} for {dataset_names[0]} or the other {len(dataset_names) - 1} datasets"


####################################################################################################
#### Resources for the QC-ART step
class QcartResources(AnalysisResources):
    """
    Stages everything the QC-ART R script needs: the parameter file with the
    baseline datasets, the R script template (customized for this dataset),
    the _ReporterIons.txt files, the SMAQC metrics and, when one exists, the
    cached baseline results for the same set of baseline datasets.
    """

    ####################################################################################################
    #### Constructor
    def __init__(self, job_params, mgr_params, work_dir=None, file_retriever=None, database=None,
                 clock=None, sleep=None, verbose=None):
        super().__init__(job_params, mgr_params, work_dir=work_dir, file_retriever=file_retriever, verbose=verbose)

        if database is None:
            database = QcMetricsDatabase(mgr_params.get_param('ConnectionString', ''), verbose=verbose)
        if clock is None: clock = timeit.default_timer
        if sleep is None: sleep = default_sleep
        self.database = database
        self.clock = clock
        self.sleep = sleep

        self.project_name = ''
        self.target_dataset_fraction = 0


    ####################################################################################################
    #### Stage the QC-ART inputs
    def get_resources(self):

        #### Retrieve the parameter file
        param_file_name = self.job_params.get_job_parameter('ParmFileName', '')
        param_file_storage_path = self.job_params.get_job_parameter('ParamFileStoragePath', '')
        if param_file_name == '':
            self.log_error("Job parameter ParmFileName is not defined")
            return CLOSEOUT_FAILED
        param_file_path_local = self.file_retriever.retrieve_file(param_file_name, source_dir=param_file_storage_path)
        if param_file_path_local is None:
            self.log_error(f"Parameter file not found: {param_file_name}")
            return CLOSEOUT_FAILED

        #### Retrieve the QC-ART R script template
        r_script_name = self.job_params.get_job_parameter('QCARTRScriptName', DEFAULT_R_SCRIPT_NAME)
        r_script_storage_path = os.path.join(param_file_storage_path, 'Template_Scripts')
        if self.file_retriever.retrieve_file(r_script_name, source_dir=r_script_storage_path) is None:
            self.log_error(f"Template QC-ART R Script not found: {r_script_name}")
            return CLOSEOUT_FAILED

        #### Read the baseline datasets from the parameter file
        result = self.parse_qcart_param_file(param_file_path_local)
        if result is None:
            return CLOSEOUT_FAILED
        baseline_datasets, baseline_metadata_key = result

        #### Look for cached baseline results; otherwise this job computes the baseline
        param_file_path_remote = os.path.join(param_file_storage_path, param_file_name)
        baseline_results_found, baseline_metadata_file_path, critical_error = self.find_baseline_results(param_file_path_remote, baseline_metadata_key)
        if critical_error:
            return CLOSEOUT_FAILED

        if not baseline_results_found:
            lock_file_path = self.create_lock_file(baseline_metadata_file_path,
                f"Creating QCART baseline data via {self.mgr_params.get_param('MgrName', 'manager')}")
            self.job_params.add_additional_parameter(JOB_PARAMETERS_SECTION, JOB_PARAMETER_QCART_BASELINE_METADATA_LOCKFILE, lock_file_path)

        dataset_names_to_retrieve_metrics = sorted(set([ self.dataset_name ] + list(baseline_datasets.keys())))

        if not self.retrieve_target_reporter_ions_file():
            return CLOSEOUT_FILE_NOT_FOUND

        if not baseline_results_found:
            self.retrieve_data_for_baseline_datasets(baseline_datasets)
            if not self.create_baseline_dataset_info_file(baseline_datasets):
                return CLOSEOUT_FAILED

        self.job_params.store_packed_dictionary(JOB_PARAMETER_QCART_BASELINE_DATASET_NAMES_AND_JOBS, baseline_datasets)

        if not self.retrieve_qc_metrics_from_db(dataset_names_to_retrieve_metrics):
            return CLOSEOUT_FAILED

        if not self.customize_r_script(r_script_name, baseline_results_found):
            return CLOSEOUT_FAILED

        return CLOSEOUT_SUCCESS


    ####################################################################################################
    #### Read the project name and baseline datasets. Returns (baseline_datasets, key) or None
    def parse_qcart_param_file(self, param_file_path):

        no_baseline_info = ("One or more baseline datasets not found in the QC-ART parameter file; "
                            "expected at <Parameters><BaselineList><BaselineDataset>")
        try:
            tree = etree.parse(param_file_path)
        except (OSError, etree.XMLSyntaxError) as error:
            self.log_error(f"Unable to parse the QC-ART parameter file {os.path.basename(param_file_path)}: {error}")
            return

        project_nodes = tree.xpath('/Parameters/Metadata/Project')
        if len(project_nodes) == 0:
            self.log_error("Project node not found in the QC-ART parameter file; expected at <Parameters><Metadata><Project>")
            return
        self.project_name = (project_nodes[0].text or '').strip()
        if self.project_name == '':
            self.project_name = 'Unknown'
        self.job_params.add_additional_parameter(JOB_PARAMETERS_SECTION, JOB_PARAMETER_QCART_PROJECT_NAME, self.project_name)

        baseline_datasets = {}
        for entry in tree.xpath('/Parameters/BaselineList/BaselineDataset'):
            masic_job = entry.findtext('MasicJob')
            dataset_name = entry.findtext('Dataset')
            if masic_job is None or dataset_name is None:
                self.log_error("Nodes MasicJob and Dataset not found beneath a BaselineDataset node in the QC-ART parameter file")
                return
            try:
                baseline_datasets[dataset_name.strip()] = int(masic_job)
            except ValueError:
                self.log_error(f"MasicJob is not an integer for baseline dataset {dataset_name.strip()}: {masic_job}")
                return

        if len(baseline_datasets) == 0:
            self.log_error(no_baseline_info)
            return

        return baseline_datasets, compute_baseline_metadata_key(baseline_datasets)


    ####################################################################################################
    #### Look for cached baseline results. Returns (found, metadata_file_path, critical_error)
    def find_baseline_results(self, param_file_path, baseline_metadata_key):

        if not os.path.isfile(param_file_path):
            self.log_error(f"Parameter file not found: {param_file_path}")
            return False, '', True

        project_dir = os.path.join(os.path.dirname(os.path.abspath(param_file_path)), 'Cache', self.project_name)
        try:
            os.makedirs(project_dir, exist_ok=True)
        except OSError as error:
            self.log_error(f"Unable to create the QC-ART cache directory {project_dir}: {error}")
            return False, '', True

        baseline_metadata_file_name = get_baseline_metadata_file_name(baseline_metadata_key)
        baseline_metadata_file_path = os.path.join(project_dir, baseline_metadata_file_name)
        self.job_params.add_additional_parameter(JOB_PARAMETERS_SECTION, JOB_PARAMETER_QCART_BASELINE_RESULTS_CACHE_FOLDER, project_dir)
        self.job_params.add_additional_parameter(JOB_PARAMETERS_SECTION, JOB_PARAMETER_QCART_BASELINE_METADATA_FILENAME, baseline_metadata_file_name)

        #### Another manager may be creating the same baseline right now
        self.check_for_lock_file(baseline_metadata_file_path, 'QCART baseline metadata file', LOCK_FILE_MAX_WAIT_MINUTES)

        if not os.path.isfile(baseline_metadata_file_path):
            return False, baseline_metadata_file_path, False

        found, critical_error = self.retrieve_existing_baseline_result_file(baseline_metadata_file_path)
        return found, baseline_metadata_file_path, critical_error


    ####################################################################################################
    #### Wait for another manager's lock file to go away, deleting it once it is too old
    def check_for_lock_file(self, data_file_path, description, max_wait_minutes):

        lock_file_path = data_file_path + LOCK_FILE_SUFFIX
        max_wait_seconds = max_wait_minutes * 60
        t0 = self.clock()
        while os.path.isfile(lock_file_path):
            lock_age = time.time() - os.path.getmtime(lock_file_path)
            if lock_age >= max_wait_seconds or self.clock() - t0 >= max_wait_seconds:
                self.log_warning(f"Deleting stale lock file for the {description}: {lock_file_path}")
                os.remove(lock_file_path)
                break
            if self.verbose >= 1:
                eprint(f"INFO: Waiting for lock file {os.path.basename(lock_file_path)} to be deleted")
            self.sleep(LOCK_FILE_POLL_SECONDS)


    ####################################################################################################
    #### Create a lock file beside the data file; returns its path
    def create_lock_file(self, data_file_path, task_description):
        lock_file_path = data_file_path + LOCK_FILE_SUFFIX
        with open(lock_file_path, 'w') as outfile:
            print(f"Date: {time.strftime('%Y-%m-%d %H:%M:%S')}", file=outfile)
            print(f"Task: {task_description}", file=outfile)
        return lock_file_path


    ####################################################################################################
    #### Copy the cached baseline data file named in the metadata file. Returns (found, critical_error)
    def retrieve_existing_baseline_result_file(self, baseline_metadata_file_path):

        try:
            tree = etree.parse(baseline_metadata_file_path)
        except (OSError, etree.XMLSyntaxError) as error:
            self.log_error(f"Unable to parse the QC-ART baseline metadata file {baseline_metadata_file_path}: {error}")
            return False, True

        cache_file_nodes = tree.xpath('/Parameters/Results/BaselineDataCacheFile')
        if len(cache_file_nodes) == 0:
            self.log_warning("BaselineDataCacheFile node not found in the QC-ART baseline results metadata file; "
                             "expected at <Parameters><Results><BaselineDataCacheFile>")
            return False, False

        baseline_data_cache_file_name = (cache_file_nodes[0].text or '').strip()
        if baseline_data_cache_file_name == '':
            self.log_warning("BaselineDataCacheFile node is empty in the QC-ART baseline results metadata file")
            return False, False

        cache_dir = os.path.dirname(baseline_metadata_file_path)
        if not os.path.isfile(os.path.join(cache_dir, baseline_data_cache_file_name)):
            self.log_warning(f"QC-ART baseline results data file not found: {os.path.join(cache_dir, baseline_data_cache_file_name)}")
            self.log_warning(f"Deleting invalid QC-ART baseline metadata file: {baseline_metadata_file_path}")
            os.remove(baseline_metadata_file_path)
            return False, False

        if self.file_retriever.retrieve_file(baseline_data_cache_file_name, source_dir=cache_dir) is None:
            self.log_error(f"Error retrieving {baseline_data_cache_file_name}")
            return False, True

        self.job_params.add_additional_parameter(JOB_PARAMETERS_SECTION, JOB_PARAMETER_QCART_BASELINE_RESULTS_FILENAME, baseline_data_cache_file_name)
        self.job_params.add_result_file_to_skip(baseline_data_cache_file_name)
        return True, False


    ####################################################################################################
    #### Retrieve the _ReporterIons.txt file of the MASIC job for this dataset
    def retrieve_target_reporter_ions_file(self):

        target_dataset_name = self.job_params.get_job_parameter('SourceJob2Dataset', '')
        target_dataset_masic_job = self.job_params.get_job_parameter('SourceJob2', 0)
        if target_dataset_name == '' or target_dataset_masic_job == 0:
            self.log_error("Job parameters SourceJob2Dataset and SourceJob2 not found; populated via the [Special Processing] job parameter")
            return False

        if target_dataset_name.lower() != self.dataset_name.lower():
            self.log_warning(f"SourceJob2Dataset for job {self.job} does not match the dataset for this job; it is instead {target_dataset_name}")

        masic_folder_path = self.job_params.get_job_parameter('SourceJob2FolderPath', '')
        if masic_folder_path == '':
            self.log_error("Job parameter SourceJob2FolderPath not found; populated via the [Special Processing] job parameter")
            return False

        reporter_ions_file_name = self.dataset_name + REPORTER_IONS_FILE_SUFFIX
        if self.file_retriever.retrieve_file(reporter_ions_file_name, source_dir=masic_folder_path) is None:
            self.log_error(f"{REPORTER_IONS_FILE_SUFFIX} file not found for dataset {self.dataset_name}, job {target_dataset_masic_job}")
            return False

        self.job_params.add_result_file_to_skip(reporter_ions_file_name)
        return True


    ####################################################################################################
    #### Retrieve the _ReporterIons.txt files of the baseline datasets; missing ones are warnings
    def retrieve_data_for_baseline_datasets(self, baseline_datasets):
        n_retrieved = 0
        for baseline_dataset_name in sorted(baseline_datasets):
            reporter_ions_file_name = baseline_dataset_name + REPORTER_IONS_FILE_SUFFIX
            if self.file_retriever.retrieve_file(reporter_ions_file_name) is None:
                self.log_warning(f"{REPORTER_IONS_FILE_SUFFIX} file not found for dataset {baseline_dataset_name}, job {baseline_datasets[baseline_dataset_name]}")
                continue
            self.job_params.add_result_file_to_skip(reporter_ions_file_name)
            n_retrieved += 1
        return n_retrieved


    ####################################################################################################
    #### Write NewBaselineDatasets_Metadata.csv with each baseline dataset and its SCX fraction
    def create_baseline_dataset_info_file(self, baseline_datasets):

        dataset_parse_errors = []
        with open(os.path.join(self.work_dir, NEW_BASELINE_DATASETS_METADATA_FILE), 'w') as outfile:
            print("DatasetName,Fraction", file=outfile)
            for dataset_name in baseline_datasets:
                fraction_number = extract_fraction_from_dataset_name(dataset_name)
                if fraction_number <= 0:
                    dataset_parse_errors.append(dataset_name)
                print(f"{dataset_name},{fraction_number}", file=outfile)

        if len(dataset_parse_errors) == 0:
            return True

        self.log_error(format_message_for_datasets("Could not determine SCX fraction number", dataset_parse_errors) + " (create_baseline_dataset_info_file)")
        return False


    ####################################################################################################
    #### Write SMAQC_Data.csv with the QC metrics and SCX fraction of each dataset
    def retrieve_qc_metrics_from_db(self, dataset_names):

        if len(dataset_names) == 0:
            self.log_error("No datasets to retrieve QC metrics for")
            return False

        metrics = self.database.get_qc_metrics(dataset_names)
        if metrics is None:
            self.log_error("Excessive failures attempting to retrieve QC metric data from database")
            return False

        if len(metrics) == 0:
            self.log_error(format_message_for_datasets("QC Metrics not found", dataset_names) + " (retrieve_qc_metrics_from_db)")
            return False

        if 'fraction' not in metrics.columns:
            self.log_error("retrieve_qc_metrics_from_db: column fraction not found in query results")
            return False

        #### One row per dataset
        metrics = metrics.loc[~metrics['dataset_name'].str.lower().duplicated()].copy()

        dataset_parse_errors = []
        for index, dataset_name in metrics['dataset_name'].items():
            fraction_number = extract_fraction_from_dataset_name(dataset_name)
            if fraction_number <= 0:
                dataset_parse_errors.append(dataset_name)
                continue
            metrics.loc[index, 'fraction'] = fraction_number
            if dataset_name.lower() == self.dataset_name.lower():
                self.target_dataset_fraction = fraction_number

        metrics.to_csv(os.path.join(self.work_dir, SMAQC_DATA_FILE_NAME), index=False)

        if len(dataset_parse_errors) > 0:
            self.log_error(format_message_for_datasets("Could not determine SCX fraction number", dataset_parse_errors) + " (retrieve_qc_metrics_from_db)")
            return False

        datasets_matched = set(metrics['dataset_name'].str.lower())
        missing_datasets = [ name for name in dataset_names if name.lower() not in datasets_matched ]
        if len(missing_datasets) > 0:
            self.log_error(format_message_for_datasets("QC metrics not found in V_Dataset_QC_Metrics_Export", missing_datasets) + " (retrieve_qc_metrics_from_db)")
            return False

        return True


    ####################################################################################################
    #### Value for one template token, or None if the token cannot be filled in
    def get_template_value(self, param_name, r_script_name, baseline_results_found):

        if param_name == 'WORKING_DIRECTORY_PATH':
            return to_unix_folder_path(self.work_dir)
        if param_name == 'TARGET_DATASET_NAME':
            return self.dataset_name
        if param_name == 'TARGET_DATASET_FRACTION':
            if self.target_dataset_fraction == 0:
                self.log_error(f"Error in customize_r_script: SCX fraction for dataset {self.dataset_name} is 0")
                return
            return str(self.target_dataset_fraction)
        if param_name == 'USE_EXISTING_BASELINE':
            return 'TRUE' if baseline_results_found else 'FALSE'
        if param_name == 'NEW_BASELINE_DATASET_INFO_FILENAME':
            return 'NULL' if baseline_results_found else NEW_BASELINE_DATASETS_METADATA_FILE
        if param_name == 'EXISTING_BASELINE_CSV_NAME':
            if not baseline_results_found:
                return 'UndefinedFile_since_NewBaselineDatasets.csv'
            value = self.job_params.get_job_parameter(JOB_PARAMETER_QCART_BASELINE_RESULTS_FILENAME, '')
            if value == '':
                self.log_error(f"Error in customize_r_script: {JOB_PARAMETER_QCART_BASELINE_RESULTS_FILENAME} is undefined")
                return
            return value
        if param_name == 'NEW_BASELINE_DATA_FILENAME':
            return 'UndefinedFile_sinceExistingBaselineDatasetFile.csv' if baseline_results_found else NEW_BASELINE_DATASETS_CACHE_FILE
        if param_name == 'SMAQC_DATA_FILENAME':
            return SMAQC_DATA_FILE_NAME
        if param_name == 'TARGET_DATASET_RESULTS':
            return self.dataset_name + QCART_RESULTS_FILE_SUFFIX

        self.log_error(f"Unrecognized template name in the QC-ART template script: {param_name} in {r_script_name}")
        return


    ####################################################################################################
    #### Write QC-ART_Processing_Script.R from the template, filling in the {$NAME} tokens
    def customize_r_script(self, r_script_name, baseline_results_found):

        template_file = os.path.join(self.work_dir, r_script_name)
        customized_script = os.path.join(self.work_dir, QCART_PROCESSING_SCRIPT_NAME)

        with open(template_file) as infile, open(customized_script, 'w') as outfile:
            for line in infile:
                line = line.rstrip('\r\n')
                match = TEMPLATE_TOKEN_REGEX.search(line)
                if match is None:
                    print(line, file=outfile)
                    continue

                custom_value = self.get_template_value(match.group(1), r_script_name, baseline_results_found)
                if custom_value is None:
                    return False
                print(TEMPLATE_TOKEN_REGEX.sub(lambda token: custom_value, line), file=outfile)

        self.job_params.add_result_file_to_skip(r_script_name)
        return True


####################################################################################################
#### For command-line usage
def main():

    argparser = argparse.ArgumentParser(description='Stages the input files for a QC-ART job into a working directory')
    argparser.add_argument('--job_params', action='store', required=True, help='Job parameters XML file')
    argparser.add_argument('--mgr_params', action='store', required=True, help='Manager parameters JSON file')
    argparser.add_argument('--work_dir', action='store', default='.', help='Working directory')
    argparser.add_argument('--output_job_params', action='store', help='If set, write the job parameters, including those added while staging, to this file')
    argparser.add_argument('--verbose', action='count', help='If set, print more information about ongoing processing' )
    argparser.add_argument('--version', action='version', version='%(prog)s 0.5')
    params = argparser.parse_args()

    #### Set verbose
    verbose = params.verbose
    if verbose is None: verbose = 1

    job_params = JobParameters(verbose=verbose)
    if job_params.read_file(params.job_params) is None:
        sys.exit(1)
    mgr_params = ManagerParameters(verbose=verbose)
    if mgr_params.read_file(params.mgr_params) is None:
        sys.exit(1)

    resources = QcartResources(job_params, mgr_params, work_dir=params.work_dir, verbose=verbose)
    result = resources.get_resources()
    print(result)
    if params.output_job_params is not None:
        job_params.write_file(params.output_job_params)
    if result != CLOSEOUT_SUCCESS:
        eprint(f"ERROR: {resources.message}")
        sys.exit(1)


#### For command line usage
if __name__ == "__main__": main()
