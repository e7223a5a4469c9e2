#!/usr/bin/env python3

import sys
import os
import argparse
import os.path
import timeit
import json
def eprint(*args, **kwargs): print(*args, file=sys.stderr, **kwargs)

from cdta_reader import CdtaTextFileReader, SpectrumHeader
from ticker import Ticker

#### Seconds between "Merging CDTAs" status messages
STATUS_INTERVAL_SECONDS = 30


####################################################################################################
#### Merge result class
class MergeResult:
    """
    Outcome of one merge_cdtas() call. status is 'OK' or 'ERROR'; warnings
    holds the per-spectrum skip messages plus the final skipped-count summary.
    """

    ####################################################################################################
    #### Constructor
    def __init__(self, parent_file, fragment_file, output_file):
        self.parent_file = parent_file
        self.fragment_file = fragment_file
        self.output_file = output_file
        self.status = 'OK'
        self.code = 'OK'
        self.error = None
        self.warnings = []
        self.n_parent_spectra = 0
        self.n_fragment_spectra = 0
        self.n_merged = 0
        self.n_skipped = 0
        self.n_rewinds = 0
        self.elapsed_time = 0.0


    ####################################################################################################
    #### Record a fatal problem
    def set_error(self, code, message):
        self.status = 'ERROR'
        self.code = code
        self.error = message


    ####################################################################################################
    #### Record a parent spectrum that could not be matched
    def skip(self, parent_header):
        self.n_skipped += 1
        self.warnings.append(f"MergeCDTAs could not find spectrum with StartScan={parent_header.scan_number_start} and "
            f"EndScan={parent_header.scan_number_end} for {os.path.basename(self.parent_file)}")


    ####################################################################################################
    #### Return a dict representation
    def to_dict(self):
        return {
            'parent_file': self.parent_file,
            'fragment_file': self.fragment_file,
            'output_file': self.output_file,
            'status': self.status,
            'code': self.code,
            'error': self.error,
            'warnings': self.warnings,
            'n_parent_spectra': self.n_parent_spectra,
            'n_fragment_spectra': self.n_fragment_spectra,
            'n_merged': self.n_merged,
            'n_skipped': self.n_skipped,
            'n_rewinds': self.n_rewinds,
        }


####################################################################################################
#### Build the map of start scan -> set of end scans for every spectrum in a reader
def build_scan_range_index(reader):
    scan_range_index = {}
    while True:
        header = reader.read_next_spectrum()
        if header is None:
            break
        if header.scan_number_start not in scan_range_index:
            scan_range_index[header.scan_number_start] = set()
        scan_range_index[header.scan_number_start].add(header.scan_number_end)
    return scan_range_index


####################################################################################################
#### Return True if the fragment file has some spectrum with the parent's start and end scan
def scan_match_is_possible(scan_range_index, parent_header):
    end_scans = scan_range_index.get(parent_header.scan_number_start)
    if end_scans is None:
        return False
    return parent_header.scan_number_end in end_scans


####################################################################################################
#### Compatibility shim for MSConvert headers with an end scan below the start scan
def fragment_end_scan_is_unknown(fragment_header):
    """
    Some MSConvert-written headers (first seen with dataset
    Athal0503_26Mar12_Jaguar_12-02-26) report an end scan smaller than the
    start scan. Such an end scan is treated as unknown, so the start scan alone
    decides the match. Only the fragment-ion header is ever tested this way.
    """
    return fragment_header.scan_number_end < fragment_header.scan_number_start


####################################################################################################
#### Return True if the parent-ion header and the fragment-ion header describe the same spectrum
def scan_headers_match(parent_header, fragment_header):
    if fragment_header.is_empty():
        return False
    if parent_header.scan_number_start != fragment_header.scan_number_start:
        return False
    if parent_header.scan_number_end == fragment_header.scan_number_end:
        return True
    return fragment_end_scan_is_unknown(fragment_header)


####################################################################################################
#### Remove the title line and the parent ion line that follows it from a block of spectrum text
def remove_title_and_parent_ion_lines(spectrum_text):
    peak_lines = []
    previous_line_was_title = False
    for line in spectrum_text.splitlines():
        if line.strip() == '':
            continue
        if line.startswith('='):
            previous_line_was_title = True
            continue
        if previous_line_was_title:
            previous_line_was_title = False
            continue
        peak_lines.append(line + '\n')
    return ''.join(peak_lines)


####################################################################################################
#### CDTA merger class
class CdtaMerger:
    """
    Combines the title and parent ion lines of one CDTA file with the peak lists
    of a second CDTA file that covers the same scans, typically the original
    DeconMSn or ExtractMSn spectra merged with MSConvert centroided spectra.
    """

    ####################################################################################################
    #### Constructor
    def __init__(self, clock=None, status_interval=None, reader_class=None, verbose=None):
        if status_interval is None: status_interval = STATUS_INTERVAL_SECONDS
        if reader_class is None: reader_class = CdtaTextFileReader
        self.reader_class = reader_class
        self.clock = clock
        self.status_interval = status_interval

        #### Set verbosity
        if verbose is None: verbose = 0
        self.verbose = verbose


    ####################################################################################################
    #### Advance the fragment reader until its current spectrum matches the parent header
    def advance_to_match(self, fragment_reader, parent_header, fragment_header):
        while not scan_headers_match(parent_header, fragment_header):
            next_header = fragment_reader.read_next_spectrum()
            if next_header is None:
                break
            fragment_header = next_header
        return fragment_header, scan_headers_match(parent_header, fragment_header)


    ####################################################################################################
    #### Merge the parent ion file with the fragment ion file into output_file
    def merge_cdtas(self, parent_file, fragment_file, output_file):

        t0 = timeit.default_timer()
        result = MergeResult(parent_file, fragment_file, output_file)
        parent_name = os.path.basename(parent_file)
        fragment_name = os.path.basename(fragment_file)

        parent_reader = self.reader_class(verbose=self.verbose)
        if not parent_reader.open_file(parent_file):
            result.set_error('CantOpenParentFile', f"Error opening CDTA file with the parent ion data: {parent_file}")
            return result

        fragment_reader = self.reader_class(verbose=self.verbose)
        if not fragment_reader.open_file(fragment_file):
            parent_reader.close_file()
            result.set_error('CantOpenFragmentFile', f"Error opening CDTA file with the fragment ion data: {fragment_file}")
            return result

        try:
            #### Cache the start/end scan combinations in the fragment file
            if self.verbose >= 1:
                eprint(f"INFO: Scanning {fragment_name} to cache the scan range for each MS/MS spectrum")
            scan_range_index = build_scan_range_index(fragment_reader)
            result.n_fragment_spectra = fragment_reader.n_spectra_read
            fragment_reader.rewind()
            fragment_header = SpectrumHeader()

            if self.verbose >= 1:
                eprint(f"INFO: Merging {parent_name} with {fragment_name}")
            status_ticker = Ticker(self.status_interval, clock=self.clock, fire_immediately=False)

            with open(output_file, 'w') as outfile:
                while True:
                    parent_header = parent_reader.read_next_spectrum()
                    if parent_header is None:
                        break
                    result.n_parent_spectra += 1

                    if not scan_match_is_possible(scan_range_index, parent_header):
                        result.skip(parent_header)
                        if self.verbose >= 1:
                            eprint(f"WARNING: {result.warnings[-1]}")
                        continue

                    fragment_header, matched = self.advance_to_match(fragment_reader, parent_header, fragment_header)

                    #### The two files fell out of order; start over from the top of the fragment file once
                    if not matched:
                        fragment_reader.rewind()
                        result.n_rewinds += 1
                        fragment_header, matched = self.advance_to_match(fragment_reader, parent_header, SpectrumHeader())

                    if not matched:
                        result.skip(parent_header)
                        if self.verbose >= 1:
                            eprint(f"WARNING: {result.warnings[-1]}")
                        continue

                    peak_text = remove_title_and_parent_ion_lines(fragment_reader.get_most_recent_spectrum_text())
                    if peak_text.strip() == '':
                        result.set_error('EmptyFragmentText', f"remove_title_and_parent_ion_lines returned empty text for "
                            f"StartScan={parent_header.scan_number_start} and EndScan={parent_header.scan_number_end} "
                            f"in MergeCDTAs for {parent_name}")
                        eprint(f"ERROR: {result.error}")
                        break

                    outfile.write('\n')
                    outfile.write(parent_header.title_line + '\n')
                    outfile.write(parent_header.parent_ion_line + '\n')
                    outfile.write(peak_text)
                    result.n_merged += 1

                    if status_ticker.is_due() and self.verbose >= 1:
                        eprint(f"INFO: Merging CDTAs, scan {parent_header.scan_number_start}")

        #### Unreadable text (e.g. invalid UTF-8) arrives as a ValueError
        except (OSError, ValueError) as error:
            result.set_error('MergeIOError', f"Error merging CDTA files {parent_name} and {fragment_name}: {error}")
            eprint(f"ERROR: {result.error}")

        finally:
            parent_reader.close_file()
            fragment_reader.close_file()

        if result.status == 'OK' and result.n_skipped > 0:
            message = f"Skipped {result.n_skipped} spectra in MergeCDTAs since they were not created by MSConvert"
            result.warnings.append(message)
            eprint(f"WARNING: {message}")

        result.elapsed_time = timeit.default_timer() - t0
        if self.verbose >= 1:
            eprint(f"INFO: Merged {result.n_merged} of {result.n_parent_spectra} spectra in {result.elapsed_time:.2f} sec")
        return result


####################################################################################################
#### For command-line usage
def main():

    argparser = argparse.ArgumentParser(description='Merges the parent ion lines of one _dta.txt file with the peaks of another')
    argparser.add_argument('--verbose', action='count', help='If set, print more information about ongoing processing' )
    argparser.add_argument('--version', action='version', version='%(prog)s 0.5')
    argparser.add_argument('parent_file', type=str, help='_dta.txt file with the parent ion data (title and parent ion lines)')
    argparser.add_argument('fragment_file', type=str, help='_dta.txt file with the fragment ion data (e.g. centroided peaks)')
    argparser.add_argument('output_file', type=str, help='Merged _dta.txt file to write')
    params = argparser.parse_args()

    #### Set verbose
    verbose = params.verbose
    if verbose is None: verbose = 1

    merger = CdtaMerger(verbose=verbose)
    result = merger.merge_cdtas(params.parent_file, params.fragment_file, params.output_file)
    print(json.dumps(result.to_dict(), indent=2, sort_keys=True))
    if result.status != 'OK':
        sys.exit(1)


#### For command line usage
if __name__ == "__main__": main()
