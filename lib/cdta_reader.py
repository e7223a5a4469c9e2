#!/usr/bin/env python3

import sys
import os
import argparse
import os.path
import json
def eprint(*args, **kwargs): print(*args, file=sys.stderr, **kwargs)

#### Left and right padding used on the title line of each spectrum in a concatenated DTA file
DTA_HEADER_LEFT = '=================================== "'
DTA_HEADER_RIGHT = '" =================================='


####################################################################################################
#### Spectrum header class
class SpectrumHeader:
    """
    One spectrum block of a CDTA file, as far as the header is concerned.
    A freshly constructed header has zero scan numbers and empty text and never
    matches a real spectrum.
    """

    ####################################################################################################
    #### Constructor
    def __init__(self, title_line='', parent_ion_line=''):
        self.title_line = title_line
        self.parent_ion_line = parent_ion_line
        self.title = title_line.strip('= "\t')
        self.scan_number_start = 0
        self.scan_number_end = 0
        self.charge = 0
        self.parent_ion_mh = 0.0
        self.parent_ion_charge = 0

        if self.title != '':
            scan_info = extract_scan_info_from_dta_header(self.title)
            if scan_info is not None:
                self.scan_number_start, self.scan_number_end, self.charge = scan_info

        #### The parent ion line is "MH+ charge", possibly followed by scan= and cs= tags
        fields = parent_ion_line.split()
        if len(fields) >= 2:
            try:
                self.parent_ion_mh = float(fields[0])
                self.parent_ion_charge = int(fields[1])
            except ValueError:
                pass


    ####################################################################################################
    #### Return true if this header was never populated from a file
    def is_empty(self):
        return self.title_line == ''


    ####################################################################################################
    #### Return a dict representation
    def to_dict(self):
        return {
            'title': self.title,
            'scan_number_start': self.scan_number_start,
            'scan_number_end': self.scan_number_end,
            'charge': self.charge,
            'parent_ion_mh': self.parent_ion_mh,
            'parent_ion_charge': self.parent_ion_charge,
        }


####################################################################################################
#### Extract the start scan, end scan and charge from a title like Dataset.0002.0002.3.dta
def extract_scan_info_from_dta_header(title):

    if title is None:
        return
    title = title.strip('= "\t')
    if title == '':
        return

    #### Anything after the first whitespace is extra info, e.g. NativeID:'...' from MSConvert
    title = title.split()[0]
    if title.lower().endswith('.dta'):
        title = title[:-4]

    fields = title.rsplit('.', 3)
    if len(fields) < 4:
        return

    try:
        scan_number_start = int(fields[1])
        scan_number_end = int(fields[2])
    except ValueError:
        return

    #### A trailing period without a charge is allowed
    if fields[3] == '':
        charge = 0
    else:
        try:
            charge = int(fields[3])
        except ValueError:
            return

    return scan_number_start, scan_number_end, charge


####################################################################################################
#### Build a CDTA title line for the given spectrum name
def make_dta_title_line(name):
    return f"{DTA_HEADER_LEFT}{name}{DTA_HEADER_RIGHT}"


####################################################################################################
#### CDTA text file reader class
class CdtaTextFileReader:
    """
    Sequential reader for concatenated DTA (_dta.txt) files. Each call to
    read_next_spectrum() returns the next SpectrumHeader, and the full text of
    that block stays available until the following read. rewind() moves the
    cursor back to the start of the file without reopening it.
    """

    ####################################################################################################
    #### Constructor
    def __init__(self, verbose=None):
        self.filename = None
        self.infile = None
        self.pending_title_line = None
        self.most_recent_lines = []
        self.most_recent_header = SpectrumHeader()
        self.n_spectra_read = 0

        #### Set verbosity
        if verbose is None: verbose = 0
        self.verbose = verbose


    ####################################################################################################
    #### Context manager support
    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close_file()


    ####################################################################################################
    #### Open the file
    def open_file(self, filename):

        self.close_file()
        if not os.path.isfile(filename):
            eprint(f"ERROR: CDTA file '{filename}' not found or not a file")
            return False

        try:
            self.infile = open(filename, encoding='utf-8')
        except OSError as error:
            eprint(f"ERROR: Cannot open CDTA file '{filename}' for reading: {error}")
            return False

        self.filename = filename
        self.reset_state()
        if self.verbose >= 2:
            eprint(f"DEBUG: Opened CDTA file '{filename}'")
        return True


    ####################################################################################################
    #### Clear the parsing state
    def reset_state(self):
        self.pending_title_line = None
        self.most_recent_lines = []
        self.most_recent_header = SpectrumHeader()
        self.n_spectra_read = 0


    ####################################################################################################
    #### Move the read cursor back to the start of the file
    def rewind(self):
        if self.infile is None:
            eprint(f"ERROR: Cannot rewind a CDTA reader that is not open")
            return False
        self.infile.seek(0)
        self.reset_state()
        if self.verbose >= 2:
            eprint(f"DEBUG: Rewound CDTA file '{self.filename}'")
        return True


    ####################################################################################################
    #### Close the file
    def close_file(self):
        if self.infile is not None:
            self.infile.close()
            self.infile = None


    ####################################################################################################
    #### Read the next spectrum block. Returns a SpectrumHeader or None at end of file
    def read_next_spectrum(self):

        if self.infile is None:
            return

        #### Find the title line, either left over from the previous read or the next = line
        title_line = self.pending_title_line
        self.pending_title_line = None
        while title_line is None:
            line = self.infile.readline()
            if line == '':
                self.most_recent_lines = []
                return
            line = line.rstrip('\r\n')
            if line.startswith('='):
                title_line = line

        lines = [ title_line ]
        parent_ion_line = None
        for line in self.infile:
            line = line.rstrip('\r\n')
            if line.startswith('='):
                self.pending_title_line = line
                break
            if line.strip() == '':
                #### Blank lines ahead of the parent ion line are not part of the block
                if parent_ion_line is not None:
                    lines.append('')
                continue
            if parent_ion_line is None:
                parent_ion_line = line
            lines.append(line)

        #### Drop trailing separator lines
        while len(lines) > 1 and lines[-1] == '':
            lines.pop()

        if parent_ion_line is None:
            parent_ion_line = ''
            if self.verbose >= 1:
                eprint(f"WARNING: Spectrum '{title_line.strip('= ')}' in '{self.filename}' has no parent ion line")

        header = SpectrumHeader(title_line, parent_ion_line)
        self.most_recent_lines = lines
        self.most_recent_header = header
        self.n_spectra_read += 1
        return header


    ####################################################################################################
    #### Return the full text of the most recently read spectrum, header lines included
    def get_most_recent_spectrum_text(self):
        if len(self.most_recent_lines) == 0:
            return ''
        return '\n'.join(self.most_recent_lines) + '\n'


    ####################################################################################################
    #### Return the peaks of the most recently read spectrum as a list of (mz, intensity)
    def get_most_recent_peak_list(self):
        peaks = []
        n_header_lines = 0
        for line in self.most_recent_lines:
            if line.strip() == '':
                continue
            if n_header_lines < 2:
                n_header_lines += 1
                continue
            fields = line.split()
            if len(fields) < 2:
                continue
            try:
                peaks.append( (float(fields[0]), float(fields[1])) )
            except ValueError:
                if self.verbose >= 1:
                    eprint(f"WARNING: Unable to parse peak line '{line}' in '{self.filename}'")
        return peaks


####################################################################################################
#### For command-line usage
def main():

    argparser = argparse.ArgumentParser(description='Lists the spectrum headers in a concatenated DTA file')
    argparser.add_argument('--verbose', action='count', help='If set, print more information about ongoing processing' )
    argparser.add_argument('--version', action='version', version='%(prog)s 0.5')
    argparser.add_argument('file', type=str, help='Filename of a _dta.txt file to read')
    params = argparser.parse_args()

    #### Set verbose
    verbose = params.verbose
    if verbose is None: verbose = 0

    headers = []
    with CdtaTextFileReader(verbose=verbose) as reader:
        if not reader.open_file(params.file):
            return
        while True:
            header = reader.read_next_spectrum()
            if header is None:
                break
            headers.append(header.to_dict())

    print(json.dumps(headers, indent=2, sort_keys=True))


#### For command line usage
if __name__ == "__main__": main()
