import sys
import os
import json
sys.path.append(os.path.dirname(os.path.realpath(__file__))+"/../lib")
from progress_monitors import parse_deconmsn_progress_file, get_scan_from_dta_filename, get_dta_file_progress
from progress_monitors import validate_deconmsn_results
from event_log import EventLog
from status_file import StatusFile


def test_parse_deconmsn_progress_file(tmp_path):
    filename = str(tmp_path / 'QC_Shew_DeconMSn_progress.txt')
    assert parse_deconmsn_progress_file(filename) == (None, None)

    with open(filename, 'w') as outfile:
        outfile.write('Percent complete: 12.5%\nNumber of MSn scans processed: 100\n\n')
        outfile.write('Percent complete: 42.5%\nNumber of MSn scans processed: 1234\n')
    assert parse_deconmsn_progress_file(filename) == (42.5, 1234)


def test_dta_file_progress(tmp_path):
    assert get_scan_from_dta_filename('QC_Shew.1500.1502.2.dta') == 1500
    assert get_scan_from_dta_filename('QC_Shew.txt') is None

    assert get_dta_file_progress(str(tmp_path), 2000) == (None, 0)

    with open(str(tmp_path / 'QC_Shew.500.500.2.dta'), 'w') as outfile:
        outfile.write('1000.5 2\n')
    assert get_dta_file_progress(str(tmp_path), 2000) == (25.0, 1)
    assert get_dta_file_progress(str(tmp_path), 0) == (None, 1)
    assert get_dta_file_progress(str(tmp_path), 100) == (100.0, 1)


def test_validate_deconmsn_results(tmp_path):
    work_dir = str(tmp_path)
    is_valid, message = validate_deconmsn_results(work_dir, 'QC_Shew')
    assert not is_valid
    assert message == 'DeconMSn log file not found: QC_Shew_DeconMSn_log.txt'

    log_file = str(tmp_path / 'QC_Shew_DeconMSn_log.txt')
    with open(log_file, 'w') as outfile:
        outfile.write('Some preamble\n')
    is_valid, message = validate_deconmsn_results(work_dir, 'QC_Shew')
    assert not is_valid
    assert 'MSn_Scan' in message

    with open(log_file, 'w') as outfile:
        outfile.write('MSn_Scan\tMSn_Level\tParent_Scan\n')
    is_valid, message = validate_deconmsn_results(work_dir, 'QC_Shew')
    assert not is_valid
    assert message == 'DeconMSn log file is empty: QC_Shew_DeconMSn_log.txt'

    with open(log_file, 'a') as outfile:
        outfile.write('2\t2\t1\n')
    assert validate_deconmsn_results(work_dir, 'QC_Shew') == (True, '')


def test_event_log(tmp_path):
    event_log = EventLog()
    assert event_log.get_error_message() == ''

    event_log.log_warning('NoSpectra', 'No spectra in file')
    event_log.log_error('MergeIOError', 'Disk full')
    event_log.log_error('MergeIOError', 'Disk still full')

    assert event_log.n_errors() == 2
    assert event_log.get_error_message() == 'Disk still full'
    assert event_log.metadata['state'] == { 'status': 'ERROR', 'code': 'MergeIOError', 'message': 'Disk still full' }
    assert event_log.metadata['problems']['warnings']['list'] == [ 'WARNING: [NoSpectra]: No spectra in file' ]
    assert event_log.metadata['problems']['errors']['codes'] == { 'MergeIOError': 2 }

    filename = str(tmp_path / 'events.json')
    event_log.store(filename)
    with open(filename) as infile:
        assert json.load(infile) == event_log.metadata


def test_status_file(tmp_path):
    status_file = StatusFile()
    status_file.update_and_write(progress=12.3456, spectrum_count=10)
    assert status_file.status['progress'] == 12.35
    assert status_file.status['status'] == 'Running'
    assert status_file.n_updates == 1

    filename = str(tmp_path / 'status.json')
    status_file = StatusFile(filename)
    status_file.update_and_write(status='Complete', progress=100)
    with open(filename) as infile:
        written = json.load(infile)
    assert written['status'] == 'Complete'
    assert written['progress'] == 100.0
    assert not os.path.exists(filename + '.tmp')
