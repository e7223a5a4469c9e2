#!/usr/bin/env python3

import sys
import os
import argparse
import os.path
import shutil
import datetime
def eprint(*args, **kwargs): print(*args, file=sys.stderr, **kwargs)

import pandas as pd
from lxml import etree

from job_params import JobParameters, ManagerParameters, JOB_PARAMETERS_SECTION
from program_runner import ProgramRunner
from qc_metrics_database import QcMetricsDatabase
from qcart_resources import JOB_PARAMETER_QCART_BASELINE_DATASET_NAMES_AND_JOBS, JOB_PARAMETER_QCART_BASELINE_RESULTS_CACHE_FOLDER
from qcart_resources import JOB_PARAMETER_QCART_BASELINE_METADATA_FILENAME, JOB_PARAMETER_QCART_BASELINE_METADATA_LOCKFILE
from qcart_resources import JOB_PARAMETER_QCART_BASELINE_RESULTS_FILENAME, JOB_PARAMETER_QCART_PROJECT_NAME
from qcart_resources import SMAQC_DATA_FILE_NAME, QCART_PROCESSING_SCRIPT_NAME, QCART_RESULTS_FILE_SUFFIX
from qcart_resources import NEW_BASELINE_DATASETS_METADATA_FILE, NEW_BASELINE_DATASETS_CACHE_FILE
from ticker import default_sleep
from tool_runner_base import ToolRunnerBase, CLOSEOUT_SUCCESS, CLOSEOUT_FAILED, DATE_TIME_FORMAT

PROGRESS_PCT_STARTING = 5
PROGRESS_PCT_COMPLETE = 99

R_PROGRAM_NAME = 'R.exe' if os.name == 'nt' else 'R'


####################################################################################################
#### Build the XML posted to the database for one QC-ART score
def construct_xml_for_db_posting(dataset_name, masic_job, qcart_value):
    root = etree.Element('QCART_Results')
    etree.SubElement(root, 'Dataset').text = dataset_name
    etree.SubElement(root, 'MASIC_Job').text = str(masic_job)
    measurements = etree.SubElement(root, 'Measurements')
    measurement = etree.SubElement(measurements, 'Measurement', Name='QCART')
    measurement.text = f"{qcart_value:.6f}"
    return etree.tostring(root, pretty_print=True, encoding='unicode')


####################################################################################################
#### QC-ART tool runner
class QcartToolRunner(ToolRunnerBase):
    """
    Runs the customized QC-ART R script with R CMD BATCH, reads the score for
    the dataset from Dataset_QC-ART.txt and stores it in the database. When
    the baseline was computed by this job rather than read from the cache,
    the new baseline data and a metadata file describing it are copied into
    the project cache directory for later jobs.
    """

    ####################################################################################################
    #### Constructor
    def __init__(self, job_params, mgr_params, status_file=None, work_dir=None, transfer_dir=None, runner_factory=None,
                 database=None, clock=None, sleep=None, poll_interval=None, verbose=None):
        super().__init__(job_params, mgr_params, status_file=status_file, work_dir=work_dir, transfer_dir=transfer_dir,
            clock=clock, verbose=verbose)
        if runner_factory is None: runner_factory = ProgramRunner
        if database is None:
            database = QcMetricsDatabase(mgr_params.get_param('ConnectionString', ''), verbose=verbose)
        if sleep is None: sleep = default_sleep
        self.runner_factory = runner_factory
        self.database = database
        self.sleep = sleep
        self.poll_interval = poll_interval
        self.cmd_runner = None
        self.qcart_value = None


    ####################################################################################################
    #### Run the whole step
    def run_tool(self):

        r_prog_loc = self.get_r_program_path()
        if r_prog_loc is None:
            return self.finish_failed_job(copy_results=False)

        if self.store_qcart_tool_version_info(r_prog_loc) is None:
            self.log_error("Error determining R version")
            return self.finish_failed_job(copy_results=False)

        dataset_names_and_jobs = self.get_packed_dataset_names_and_jobs()
        if len(dataset_names_and_jobs) == 0:
            self.log_error("Baseline dataset names/jobs parameter was empty; this is unexpected")
            return self.finish_failed_job(copy_results=False)

        success = self.process_dataset_with_qcart(r_prog_loc)
        if success:
            success = self.post_process_results(dataset_names_and_jobs)

        self.delete_lock_file_if_required()
        self.set_progress(PROGRESS_PCT_COMPLETE, force=True)

        if not success:
            return self.finish_failed_job()

        self.job_params.add_result_file_to_skip(SMAQC_DATA_FILE_NAME)
        self.job_params.add_result_file_to_skip(QCART_PROCESSING_SCRIPT_NAME)
        self.job_params.add_result_file_to_skip(NEW_BASELINE_DATASETS_METADATA_FILE)
        parameter_file_name = self.job_params.get_job_parameter('ParmFileName', '')
        if parameter_file_name != '':
            self.job_params.add_result_file_to_skip(parameter_file_name)
        self.job_params.add_result_file_to_skip(QCART_PROCESSING_SCRIPT_NAME + 'out')

        if self.copy_results_to_transfer_directory() is None:
            self.update_final_status(CLOSEOUT_FAILED)
            return CLOSEOUT_FAILED

        self.update_final_status(CLOSEOUT_SUCCESS)
        return CLOSEOUT_SUCCESS


    ####################################################################################################
    #### Release the lock file, archive what there is and report failure
    def finish_failed_job(self, copy_results=True):
        self.delete_lock_file_if_required()
        if copy_results:
            self.copy_failed_results_to_archive_directory()
        self.update_final_status(CLOSEOUT_FAILED)
        return CLOSEOUT_FAILED


    ####################################################################################################
    #### R lives in the directory named by the RProgLoc manager parameter
    def get_r_program_path(self):
        r_dir = self.mgr_params.get_param('RProgLoc', '')
        if r_dir == '':
            self.log_error("R folder not defined; manager parameter RProgLoc is empty")
            return
        if not os.path.isdir(r_dir):
            self.log_error(f"R folder not found at {r_dir}")
            return
        return os.path.join(r_dir, R_PROGRAM_NAME)


    ####################################################################################################
    #### Write Tool_Version_Info_QC-ART.txt
    def store_qcart_tool_version_info(self, r_prog_loc):
        if self.verbose >= 2:
            eprint("DEBUG: Determining tool version info")
        if not os.path.isfile(r_prog_loc):
            return self.store_tool_version_info('QC-ART', 'Unknown')
        return self.store_tool_version_info('QC-ART', R_PROGRAM_NAME, tool_files=[ r_prog_loc ])


    ####################################################################################################
    #### Baseline dataset names and MASIC jobs stored by the resources step
    def get_packed_dataset_names_and_jobs(self):
        dataset_names_and_jobs = {}
        packed = self.job_params.get_packed_dictionary(JOB_PARAMETER_QCART_BASELINE_DATASET_NAMES_AND_JOBS)
        for dataset_name, masic_job in packed.items():
            try:
                dataset_names_and_jobs[dataset_name] = int(masic_job)
            except ValueError:
                self.log_warning(f"Ignoring baseline dataset {dataset_name} with MASIC job {masic_job}")
        return dataset_names_and_jobs


    ####################################################################################################
    #### Run R on the customized script; R writes QC-ART_Processing_Script.Rout beside it
    def process_dataset_with_qcart(self, r_prog_loc):

        r_script_path = os.path.join(self.work_dir, QCART_PROCESSING_SCRIPT_NAME)
        arguments = [ 'CMD', 'BATCH', '--vanilla', '--slave', r_script_path ]
        if self.verbose >= 1:
            eprint(f"INFO: {r_prog_loc} {' '.join(arguments)}")

        self.cmd_runner = self.runner_factory(work_dir=self.work_dir, poll_interval=self.poll_interval, clock=self.clock,
            sleep=self.sleep, verbose=self.verbose)
        self.set_progress(PROGRESS_PCT_STARTING, force=True)

        success = self.cmd_runner.run_program(r_prog_loc, arguments, name='QCART', loop_waiting=self.loop_waiting)
        if success:
            return True

        self.log_error(f"Error running QC-ART, job {self.job}")
        if self.cmd_runner.exit_code is not None and self.cmd_runner.exit_code != 0:
            self.log_warning(f"R returned a non-zero exit code: {self.cmd_runner.exit_code}")
        else:
            self.log_warning("R failed (but exit code is 0)")
        return False


    ####################################################################################################
    #### Called by the program runner while R runs
    def loop_waiting(self):
        self.set_progress(self.progress)


    ####################################################################################################
    #### Read the score, store it, and cache a newly computed baseline
    def post_process_results(self, dataset_names_and_jobs):

        results_file = os.path.join(self.work_dir, self.dataset_name + QCART_RESULTS_FILE_SUFFIX)
        if not os.path.isfile(results_file):
            self.log_error(f"QC-ART results not found: {os.path.basename(results_file)}")
            return False

        qcart_value = self.load_qcart_results(results_file)
        if qcart_value is None:
            return False
        self.qcart_value = qcart_value

        if not self.store_results_in_db(qcart_value):
            return False

        #### Nothing to cache when an existing baseline was used
        if self.job_params.get_job_parameter(JOB_PARAMETER_QCART_BASELINE_RESULTS_FILENAME, '') != '':
            return True

        new_baseline_data = os.path.join(self.work_dir, NEW_BASELINE_DATASETS_CACHE_FILE)
        if not os.path.isfile(new_baseline_data):
            self.log_error(f"QC-ART Processing error: new baseline data file not found: {NEW_BASELINE_DATASETS_CACHE_FILE}")
            return False

        if not self.create_baseline_metrics_metadata_file(dataset_names_and_jobs, new_baseline_data):
            return False

        self.job_params.add_result_file_to_skip(NEW_BASELINE_DATASETS_CACHE_FILE)
        return True


    ####################################################################################################
    #### Return the QC-ART score for this dataset from the tab-separated results file, or None
    def load_qcart_results(self, results_file):

        try:
            results = pd.read_csv(results_file, sep='\t', dtype=str, skip_blank_lines=True)
        except pd.errors.EmptyDataError:
            self.log_error("QC-ART results file is empty")
            return
        except (OSError, pd.errors.ParserError) as error:
            self.log_error(f"Exception loading QC-ART results: {error}")
            return

        if len(results.columns) < 2:
            self.log_error("QC-ART results file has fewer than 2 columns")
            return

        for dataset_name, value in zip(results.iloc[:, 0], results.iloc[:, 1]):
            if not isinstance(dataset_name, str) or dataset_name.lower() != self.dataset_name.lower():
                self.log_warning(f"QC-ART results file has results for an unexpected dataset: {dataset_name}")
                continue
            try:
                return float(value)
            except (TypeError, ValueError):
                continue

        self.log_error("QC-ART results file is not in the expected format")
        return


    ####################################################################################################
    #### Post the score to the database
    def store_results_in_db(self, qcart_value):
        masic_job = self.job_params.get_job_parameter('SourceJob2', 0)
        dataset_id = self.job_params.get_job_parameter(JOB_PARAMETERS_SECTION, 'DatasetID', 0)
        results_xml = construct_xml_for_db_posting(self.dataset_name, masic_job, qcart_value)
        if self.verbose >= 2:
            eprint(f"DEBUG: {results_xml}")

        if self.database.store_qcart_results(dataset_id, results_xml) is None:
            self.log_error("Error storing the QC-ART result in database")
            return False
        return True


    ####################################################################################################
    #### Write the baseline metadata XML and copy it and the baseline data into the cache directory
    def create_baseline_metrics_metadata_file(self, dataset_names_and_jobs, new_baseline_data):

        cache_folder_path = self.job_params.get_job_parameter(JOB_PARAMETER_QCART_BASELINE_RESULTS_CACHE_FOLDER, '')
        baseline_metadata_file_name = self.job_params.get_job_parameter(JOB_PARAMETER_QCART_BASELINE_METADATA_FILENAME, '')
        if cache_folder_path == '' or baseline_metadata_file_name == '':
            self.log_error("QC-ART baseline cache directory or metadata file name is not defined")
            return False

        current_time = datetime.datetime.now()
        baseline_data_cache_name = f"{baseline_metadata_file_name}_{current_time.strftime('%Y-%m-%d_%I%M')}.csv"
        baseline_metadata_path_local = os.path.join(self.work_dir, baseline_metadata_file_name)

        root = etree.Element('Parameters')
        metadata = etree.SubElement(root, 'Metadata')
        etree.SubElement(metadata, 'Project').text = self.job_params.get_job_parameter(JOB_PARAMETER_QCART_PROJECT_NAME, '')
        baseline_list = etree.SubElement(root, 'BaselineList')
        for dataset_name in sorted(dataset_names_and_jobs):
            baseline_dataset = etree.SubElement(baseline_list, 'BaselineDataset')
            etree.SubElement(baseline_dataset, 'MasicJob').text = str(dataset_names_and_jobs[dataset_name])
            etree.SubElement(baseline_dataset, 'Dataset').text = dataset_name
        results = etree.SubElement(root, 'Results')
        etree.SubElement(results, 'Timestamp').text = current_time.strftime(DATE_TIME_FORMAT)
        etree.SubElement(results, 'BaselineDataCacheFile').text = baseline_data_cache_name

        try:
            etree.ElementTree(root).write(baseline_metadata_path_local, pretty_print=True, xml_declaration=True, encoding='utf-8')
        except OSError as error:
            self.log_error(f"Exception creating the baseline metrics metadata file: {error}")
            return False

        try:
            shutil.copyfile(baseline_metadata_path_local, os.path.join(cache_folder_path, baseline_metadata_file_name))
        except OSError as error:
            self.log_error(f"Exception copying the baseline metadata file to the cache folder: {error}")
            return False

        try:
            shutil.copyfile(new_baseline_data, os.path.join(cache_folder_path, baseline_data_cache_name))
        except OSError as error:
            self.log_error(f"Exception copying the baseline data cache file to the cache folder: {error}")
            return False

        if self.verbose >= 1:
            eprint(f"INFO: Cached new QC-ART baseline as {baseline_data_cache_name} in {cache_folder_path}")
        self.job_params.add_result_file_to_skip(baseline_metadata_file_name)
        return True


    ####################################################################################################
    #### Delete the baseline metadata lock file created by the resources step, if any
    def delete_lock_file_if_required(self):
        lock_file_path = self.job_params.get_job_parameter(JOB_PARAMETER_QCART_BASELINE_METADATA_LOCKFILE, '')
        if lock_file_path.strip() == '' or not os.path.isfile(lock_file_path):
            return
        try:
            os.remove(lock_file_path)
        except OSError as error:
            self.log_warning(f"Unable to delete lock file {lock_file_path}: {error}")


####################################################################################################
#### For command-line usage
def main():

    argparser = argparse.ArgumentParser(description='Runs QC-ART on a working directory prepared by qcart_resources.py')
    argparser.add_argument('--job_params', action='store', required=True, help='Job parameters XML file')
    argparser.add_argument('--mgr_params', action='store', required=True, help='Manager parameters JSON file')
    argparser.add_argument('--work_dir', action='store', default='.', help='Working directory')
    argparser.add_argument('--transfer_dir', action='store', help='Directory to copy the results to')
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

    tool_runner = QcartToolRunner(job_params, mgr_params, work_dir=params.work_dir, transfer_dir=params.transfer_dir, verbose=verbose)
    result = tool_runner.run_tool()
    print(result)
    if result != CLOSEOUT_SUCCESS:
        eprint(f"ERROR: {tool_runner.message}")
        sys.exit(1)


#### For command line usage
if __name__ == "__main__": main()
