#!/usr/bin/env python3

import sys
import os
import os.path
def eprint(*args, **kwargs): print(*args, file=sys.stderr, **kwargs)

from dta_gen import get_raw_data_type, INSTRUMENT_FILE_EXTENSIONS
from event_log import EventLog
from file_retriever import FileRetriever


####################################################################################################
#### Analysis resources base class
class AnalysisResources:
    """
    Base class of the resource steps, which stage everything a tool runner
    needs into the working directory before it runs. Files are found through
    an injected FileRetriever; by default it searches the dataset directories
    named by the DatasetStoragePath, transferFolderPath and DatasetArchivePath
    job parameters.
    """

    ####################################################################################################
    #### Constructor
    def __init__(self, job_params, mgr_params, work_dir=None, file_retriever=None, verbose=None):

        #### Set verbosity
        if verbose is None: verbose = 0
        self.verbose = verbose

        if work_dir is None: work_dir = os.getcwd()
        self.job_params = job_params
        self.mgr_params = mgr_params
        self.work_dir = work_dir
        self.dataset_name = job_params.get_dataset_name()
        self.job = job_params.get_job_number()
        self.event_log = EventLog(verbose=verbose)
        self.message = ''

        if file_retriever is None:
            file_retriever = FileRetriever(self.get_default_source_dirs(), work_dir=work_dir, verbose=verbose)
        self.file_retriever = file_retriever


    ####################################################################################################
    #### Dataset directories to search when no retriever is supplied
    def get_default_source_dirs(self):
        dataset_folder_name = self.job_params.get_job_parameter('DatasetFolderName', '')
        if dataset_folder_name == '':
            dataset_folder_name = self.dataset_name
        source_dirs = []
        for parameter_name in [ 'DatasetStoragePath', 'transferFolderPath', 'DatasetArchivePath' ]:
            base_dir = self.job_params.get_job_parameter(parameter_name, '')
            if base_dir != '':
                source_dirs.append(os.path.join(base_dir, dataset_folder_name))
        return source_dirs


    ####################################################################################################
    #### Record an error; the first error message also becomes the close-out message
    def log_error(self, message, code='ResourcesError'):
        if self.message == '':
            self.message = message
        self.event_log.log_error(code, message)


    ####################################################################################################
    #### Record a warning
    def log_warning(self, message, code='ResourcesWarning'):
        self.event_log.log_warning(code, message)


    ####################################################################################################
    #### Retrieve the instrument data for the dataset, by raw data type
    def retrieve_spectra(self, raw_data_type_name):

        raw_data_type = get_raw_data_type(raw_data_type_name)
        if raw_data_type not in INSTRUMENT_FILE_EXTENSIONS:
            self.log_error(f"Unsupported raw data type for retrieving spectra: {raw_data_type_name}")
            return False

        extension = INSTRUMENT_FILE_EXTENSIONS[raw_data_type]
        instrument_name = self.dataset_name + extension
        if extension == '.d':
            result = self.file_retriever.retrieve_directory(instrument_name)
        else:
            result = self.file_retriever.retrieve_file(instrument_name)

        if result is None:
            self.log_error(f"Error retrieving instrument data file {instrument_name}")
            return False

        self.job_params.add_result_file_to_skip(instrument_name)
        return True
