#!/usr/bin/env python3

import sys
import os
import argparse
import os.path
import re
import glob
import json
def eprint(*args, **kwargs): print(*args, file=sys.stderr, **kwargs)

DTA_FILE_SCAN_REGEX = re.compile(r'(\d+)\.\d+\.\d+\.dta$', re.IGNORECASE)
NUMBER_REGEX = re.compile(r'(\d+(\.\d+)?)')

DECONMSN_LOG_SUFFIX = '_DeconMSn_log.txt'
DECONMSN_PROGRESS_SUFFIX = '_DeconMSn_progress.txt'


####################################################################################################
#### Parse a DeconMSn progress file into (percent_complete, spectra_processed)
def parse_deconmsn_progress_file(filename):
    """
    DeconMSn rewrites its progress file as it runs, with lines like

        Percent complete: 42.5%
        Number of MSn scans processed: 1234

    The last occurrence of each wins. Values not found are returned as None.
    """

    percent_complete = None
    spectra_processed = None
    if not os.path.isfile(filename):
        return percent_complete, spectra_processed

    with open(filename, errors='replace') as infile:
        for line in infile:
            line = line.strip()
            if line == '':
                continue
            if line.startswith('Percent complete'):
                match = NUMBER_REGEX.search(line)
                if match:
                    percent_complete = float(match.group(1))
            elif line.startswith('Number of MSn scans processed'):
                match = NUMBER_REGEX.search(line)
                if match:
                    spectra_processed = int(float(match.group(1)))

    return percent_complete, spectra_processed


####################################################################################################
#### Extract the start scan from a .dta file name, or None
def get_scan_from_dta_filename(filename):
    match = DTA_FILE_SCAN_REGEX.search(os.path.basename(filename))
    if match:
        return int(match.group(1))
    return


####################################################################################################
#### Compute ExtractMSn progress from the .dta files written so far
def get_dta_file_progress(work_dir, max_scan):
    """
    Returns (progress, dta_file_count). The progress is the start scan of the
    newest .dta file as a percentage of max_scan, or None when it cannot be
    computed (no files yet or max_scan unknown).
    """

    dta_files = glob.glob(os.path.join(work_dir, '*.dta'))
    dta_file_count = len(dta_files)
    if dta_file_count == 0 or max_scan is None or max_scan <= 0:
        return None, dta_file_count

    newest_file = max(dta_files, key=os.path.getmtime)
    scan_number = get_scan_from_dta_filename(newest_file)
    if scan_number is None:
        return None, dta_file_count

    progress = min(100.0, scan_number / max_scan * 100.0)
    return progress, dta_file_count


####################################################################################################
#### Validate a DeconMSn log file left over from a previous run
def validate_deconmsn_results(work_dir, dataset_name, verbose=0):
    """
    The _DeconMSn_log.txt file must exist, have a header line starting with
    MSn_Scan, and at least one data line after it that starts with a digit.
    Returns (is_valid, message).
    """

    log_file = os.path.join(work_dir, dataset_name + DECONMSN_LOG_SUFFIX)
    if not os.path.isfile(log_file):
        return False, f"DeconMSn log file not found: {os.path.basename(log_file)}"

    found_header = False
    with open(log_file, errors='replace') as infile:
        for line in infile:
            line = line.strip()
            if line == '':
                continue
            if not found_header:
                if line.startswith('MSn_Scan'):
                    found_header = True
                continue
            if line[0].isdigit():
                if verbose >= 1:
                    eprint(f"INFO: Existing DeconMSn results are valid: {os.path.basename(log_file)}")
                return True, ''

    if not found_header:
        return False, f"DeconMSn log file does not have the MSn_Scan header line: {os.path.basename(log_file)}"
    return False, f"DeconMSn log file is empty: {os.path.basename(log_file)}"


####################################################################################################
#### For command-line usage
def main():

    argparser = argparse.ArgumentParser(description='Reports DeconMSn or ExtractMSn progress in a working directory')
    argparser.add_argument('--dataset', action='store', required=True, help='Dataset name')
    argparser.add_argument('--max_scan', action='store', type=int, default=0, help='Maximum scan number in the instrument file')
    argparser.add_argument('--version', action='version', version='%(prog)s 0.5')
    argparser.add_argument('work_dir', type=str, help='Working directory to examine')
    params = argparser.parse_args()

    progress_file = os.path.join(params.work_dir, params.dataset + DECONMSN_PROGRESS_SUFFIX)
    percent_complete, spectra_processed = parse_deconmsn_progress_file(progress_file)
    dta_progress, dta_file_count = get_dta_file_progress(params.work_dir, params.max_scan)
    is_valid, message = validate_deconmsn_results(params.work_dir, params.dataset)

    print(json.dumps({
        'deconmsn_percent_complete': percent_complete,
        'deconmsn_spectra_processed': spectra_processed,
        'dta_progress': dta_progress,
        'dta_file_count': dta_file_count,
        'deconmsn_results_valid': is_valid,
        'deconmsn_results_message': message,
    }, indent=2, sort_keys=True))


#### For command line usage
if __name__ == "__main__": main()
