import sys
import os
import zipfile
sys.path.append(os.path.dirname(os.path.realpath(__file__))+"/../lib")
from analysis_resources import AnalysisResources
from dta_gen_resources import DtaGenResources
from dta_gen_tool_runner import USING_EXISTING_DECONMSN_RESULTS
from file_retriever import FileRetriever
from job_params import JobParameters, ManagerParameters
from tool_runner_base import CLOSEOUT_SUCCESS, CLOSEOUT_FAILED, CLOSEOUT_NO_SETTINGS_FILE

DATASET_NAME = 'QC_Shew_16_01'


def make_resources(tmp_path, job_parameters):
    storage_dir = tmp_path / 'storage'
    dataset_dir = storage_dir / DATASET_NAME
    work_dir = tmp_path / 'work'
    dataset_dir.mkdir(parents=True)
    work_dir.mkdir()

    parameters = { 'DatasetName': DATASET_NAME, 'Job': '1234', 'DatasetID': '555', 'DatasetStoragePath': str(storage_dir) }
    parameters.update(job_parameters)
    job_params = JobParameters({ 'JobParameters': parameters })
    resources = DtaGenResources(job_params, ManagerParameters(), work_dir=str(work_dir))
    return resources, dataset_dir, work_dir


def test_default_source_dirs(tmp_path):
    job_params = JobParameters({ 'JobParameters': { 'DatasetName': 'DS1', 'DatasetStoragePath': '/storage',
        'DatasetArchivePath': '/archive', 'DatasetFolderName': 'DS1_folder' } })
    resources = AnalysisResources(job_params, ManagerParameters(), work_dir=str(tmp_path))
    assert resources.get_default_source_dirs() == [ '/storage/DS1_folder', '/archive/DS1_folder' ]
    assert resources.file_retriever.source_dirs == [ '/storage/DS1_folder', '/archive/DS1_folder' ]


def test_retrieve_spectra_unsupported_type(tmp_path):
    job_params = JobParameters({ 'JobParameters': { 'DatasetName': 'DS1' } })
    resources = AnalysisResources(job_params, ManagerParameters(), work_dir=str(tmp_path), file_retriever=FileRetriever([]))
    assert not resources.retrieve_spectra('dot_wiff_files')
    assert resources.message == 'Unsupported raw data type for retrieving spectra: dot_wiff_files'


def test_retrieve_thermo_raw_file(tmp_path):
    resources, dataset_dir, work_dir = make_resources(tmp_path, { 'RawDataType': 'dot_raw_files', 'DtaGenerator': 'MSConvert.exe' })
    (dataset_dir / (DATASET_NAME + '.raw')).write_text('raw data')

    assert resources.get_resources() == CLOSEOUT_SUCCESS
    assert (work_dir / (DATASET_NAME + '.raw')).read_text() == 'raw data'
    assert resources.job_params.skip_result_file(DATASET_NAME + '.raw')
    assert not resources.job_params.has_parameter(USING_EXISTING_DECONMSN_RESULTS)


def test_missing_instrument_file(tmp_path):
    resources, dataset_dir, work_dir = make_resources(tmp_path, { 'RawDataType': 'dot_raw_files', 'DtaGenerator': 'MSConvert.exe' })
    assert resources.get_resources() == CLOSEOUT_FAILED
    assert resources.message == f"Error retrieving instrument data file {DATASET_NAME}.raw"


def test_unknown_generator(tmp_path):
    resources, dataset_dir, work_dir = make_resources(tmp_path, { 'RawDataType': 'dot_raw_files', 'DtaGenerator': 'Bogus.exe' })
    assert resources.get_resources() == CLOSEOUT_NO_SETTINGS_FILE
    assert resources.message == 'Unknown DTAGenerator for Thermo Raw files: Bogus.exe'


def test_retrieve_bruker_directory(tmp_path):
    resources, dataset_dir, work_dir = make_resources(tmp_path, { 'RawDataType': 'bruker_tof_tdf', 'DtaGenerator': 'MSConvert.exe' })
    (dataset_dir / (DATASET_NAME + '.d')).mkdir()
    (dataset_dir / (DATASET_NAME + '.d') / 'analysis.tdf').write_text('tdf')

    assert resources.get_resources() == CLOSEOUT_SUCCESS
    assert (work_dir / (DATASET_NAME + '.d') / 'analysis.tdf').is_file()


def test_mgf_instrument_data(tmp_path):
    resources, dataset_dir, work_dir = make_resources(tmp_path, { 'RawDataType': 'dot_raw_files', 'MGFInstrumentData': 'True' })
    assert resources.get_resources() == CLOSEOUT_FAILED
    assert resources.message == f"Instrument data not found: {DATASET_NAME}.mgf"

    resources, dataset_dir, work_dir = make_resources(tmp_path / 'again', { 'RawDataType': 'dot_raw_files', 'MGFInstrumentData': 'True' })
    (dataset_dir / (DATASET_NAME + '.mgf')).write_text('BEGIN IONS\nEND IONS\n')
    assert resources.get_resources() == CLOSEOUT_SUCCESS
    assert (work_dir / (DATASET_NAME + '.mgf')).is_file()
    assert resources.job_params.skip_result_file('other.mgf')


def test_existing_deconmsn_results(tmp_path):
    resources, dataset_dir, work_dir = make_resources(tmp_path, { 'RawDataType': 'dot_raw_files', 'DtaGenerator': 'DeconMSn.exe',
        'CentroidDTAs': 'True' })
    (dataset_dir / (DATASET_NAME + '.raw')).write_text('raw data')

    existing_dir = dataset_dir / 'DTA_Gen_1_26_555'
    existing_dir.mkdir()
    cdta_file = tmp_path / (DATASET_NAME + '_dta.txt')
    cdta_file.write_text('\n=== "QC.1.1.2.dta" ===\n1000.5 2\n100.0 10\n')
    with zipfile.ZipFile(str(existing_dir / (DATASET_NAME + '_dta.zip')), 'w') as zip_out:
        zip_out.write(str(cdta_file), arcname=cdta_file.name)
    (existing_dir / (DATASET_NAME + '_DeconMSn_log.txt')).write_text('MSn_Scan\n1\n')

    assert resources.get_resources() == CLOSEOUT_SUCCESS
    assert resources.job_params.get_job_parameter(USING_EXISTING_DECONMSN_RESULTS, False) is True
    assert (work_dir / (DATASET_NAME + '_dta.txt')).is_file()
    assert (work_dir / (DATASET_NAME + '_DeconMSn_log.txt')).is_file()
    assert (work_dir / (DATASET_NAME + '_dta_PreExisting.zip')).is_file()
    assert not (work_dir / (DATASET_NAME + '_dta.zip')).exists()
    assert not (work_dir / (DATASET_NAME + '_profile.txt')).exists()
    assert resources.job_params.skip_result_file(DATASET_NAME + '_dta_PreExisting.zip')


def test_centroiding_without_existing_results(tmp_path):
    resources, dataset_dir, work_dir = make_resources(tmp_path, { 'RawDataType': 'dot_raw_files', 'DtaGenerator': 'DeconMSn.exe',
        'CentroidDTAs': 'True' })
    (dataset_dir / (DATASET_NAME + '.raw')).write_text('raw data')

    assert resources.get_resources() == CLOSEOUT_SUCCESS
    assert not resources.job_params.has_parameter(USING_EXISTING_DECONMSN_RESULTS)
    assert sorted(os.listdir(str(work_dir))) == [ DATASET_NAME + '.raw' ]
