#!/usr/bin/env python3

import sys
import os
import argparse
import os.path
import glob
import zipfile
def eprint(*args, **kwargs): print(*args, file=sys.stderr, **kwargs)

from cdta_reader import CdtaTextFileReader, extract_scan_info_from_dta_header, make_dta_title_line

CDTA_SUFFIX = '_dta.txt'
CDTA_ZIPPED_SUFFIX = '_dta.zip'

#### Spectra with fewer ions than this are removed by remove_sparse_spectra()
MINIMUM_ION_COUNT = 3


####################################################################################################
#### Sort key for .dta file names: start scan, end scan, charge, then name
def dta_file_sort_key(filename):
    name = os.path.basename(filename)
    scan_info = extract_scan_info_from_dta_header(name)
    if scan_info is None:
        return (sys.maxsize, 0, 0, name)
    return (scan_info[0], scan_info[1], scan_info[2], name)


####################################################################################################
#### Concatenate the individual .dta files in work_dir into Dataset_dta.txt. Returns the count
def concatenate_dta_files(work_dir, dataset_name, verbose=0):

    dta_files = sorted(glob.glob(os.path.join(work_dir, '*.dta')), key=dta_file_sort_key)
    output_file = os.path.join(work_dir, dataset_name + CDTA_SUFFIX)

    with open(output_file, 'w') as outfile:
        for dta_file in dta_files:
            outfile.write('\n')
            outfile.write(make_dta_title_line(os.path.basename(dta_file)) + '\n')
            with open(dta_file) as infile:
                for line in infile:
                    line = line.rstrip('\r\n')
                    if line.strip() == '':
                        continue
                    outfile.write(line + '\n')

    if verbose >= 1:
        eprint(f"INFO: Concatenated {len(dta_files)} .dta files into {os.path.basename(output_file)}")
    return len(dta_files)


####################################################################################################
#### Replace or discard the updated CDTA file written by a validation step
def finalize_cdta_validation(has_updates, replace_source_file, delete_source_file_if_updated, original_file, updated_file):

    if not has_updates:
        #### Nothing changed; just remove the new file
        if os.path.isfile(updated_file):
            os.remove(updated_file)
        return

    if not replace_source_file:
        return

    #### Find an unused .old name for the original
    old_file = original_file + '.old'
    addon = 1
    while os.path.exists(old_file):
        old_file = f"{original_file}.old{addon}"
        addon += 1

    os.rename(original_file, old_file)
    os.rename(updated_file, original_file)
    if delete_source_file_if_updated:
        os.remove(old_file)


####################################################################################################
#### Remove spectra with fewer than MINIMUM_ION_COUNT ions. The first spectrum is always kept
def remove_sparse_spectra(work_dir, input_file_name, verbose=0):

    source_file = os.path.join(work_dir, input_file_name)
    if not os.path.isfile(source_file):
        eprint(f"ERROR: Error in remove_sparse_spectra: source file not found: {source_file}")
        return

    updated_file = source_file + '.tmp'
    n_spectra_parsed = 0
    n_spectra_removed = 0

    with CdtaTextFileReader() as reader, open(updated_file, 'w') as outfile:
        if not reader.open_file(source_file):
            return
        while True:
            header = reader.read_next_spectrum()
            if header is None:
                break
            n_ions = len(reader.get_most_recent_peak_list())
            if n_ions >= MINIMUM_ION_COUNT or n_spectra_parsed == 0:
                outfile.write('\n')
                outfile.write(reader.get_most_recent_spectrum_text())
            else:
                n_spectra_removed += 1
            n_spectra_parsed += 1

    if n_spectra_removed > 0:
        eprint(f"INFO: Removed {n_spectra_removed} spectra from {input_file_name} since fewer than {MINIMUM_ION_COUNT} ions")

    finalize_cdta_validation(n_spectra_removed > 0, True, True, source_file, updated_file)
    return n_spectra_removed


####################################################################################################
#### Make sure each parent ion line carries scan= and cs= tags
def validate_cdta_file_scan_and_cs_tags(source_file, replace_source_file, delete_source_file_if_updated, output_file=None):

    if source_file is None or source_file == '':
        eprint(f"ERROR: Error in validate_cdta_file_scan_and_cs_tags: source_file is empty")
        return
    if not os.path.isfile(source_file):
        eprint(f"ERROR: Error in validate_cdta_file_scan_and_cs_tags: source file not found: {source_file}")
        return

    if replace_source_file:
        updated_file = source_file + '.tmp'
    else:
        if output_file is None or output_file == '':
            eprint(f"ERROR: Error in validate_cdta_file_scan_and_cs_tags: output_file must be given when replace_source_file is False")
            return
        updated_file = output_file

    parent_ion_line_is_next = False
    parent_ion_line_updated = False
    scan_number_start = 0
    charge = 0

    with open(source_file) as infile, open(updated_file, 'w') as outfile:
        for line in infile:
            line = line.rstrip('\r\n')
            if line == '':
                outfile.write('\n')
                continue

            if line.startswith('='):
                scan_info = extract_scan_info_from_dta_header(line)
                if scan_info is None:
                    scan_number_start, charge = 0, 0
                else:
                    scan_number_start, _, charge = scan_info
                parent_ion_line_is_next = True

            elif parent_ion_line_is_next:
                #### e.g. 447.34573 1   scan=3 cs=1
                if 'scan=' not in line:
                    line = line.strip() + f"   scan={scan_number_start}"
                    parent_ion_line_updated = True
                if 'cs=' not in line:
                    line = line.strip() + f" cs={charge}"
                    parent_ion_line_updated = True
                parent_ion_line_is_next = False

            outfile.write(line + '\n')

    finalize_cdta_validation(parent_ion_line_updated, replace_source_file, delete_source_file_if_updated,
        source_file, updated_file)
    return 'OK'


####################################################################################################
#### Zip a single file
def zip_file(source_file, zip_filename, verbose=0):
    if not os.path.isfile(source_file):
        eprint(f"ERROR: Cannot zip '{source_file}': file not found")
        return
    with zipfile.ZipFile(zip_filename, 'w', compression=zipfile.ZIP_DEFLATED) as zip_out:
        zip_out.write(source_file, arcname=os.path.basename(source_file))
    if verbose >= 1:
        eprint(f"INFO: Zipped {os.path.basename(source_file)} to {os.path.basename(zip_filename)}")
    return 'OK'


####################################################################################################
#### Unzip a file into target_dir, returning the list of extracted names
def unzip_file(zip_filename, target_dir, verbose=0):
    if not os.path.isfile(zip_filename):
        eprint(f"ERROR: Cannot unzip '{zip_filename}': file not found")
        return
    try:
        with zipfile.ZipFile(zip_filename) as zip_in:
            names = zip_in.namelist()
            zip_in.extractall(target_dir)
    except zipfile.BadZipFile as error:
        eprint(f"ERROR: Cannot unzip '{zip_filename}': {error}")
        return
    if verbose >= 1:
        eprint(f"INFO: Unzipped {len(names)} files from {os.path.basename(zip_filename)}")
    return names


####################################################################################################
#### For command-line usage
def main():

    argparser = argparse.ArgumentParser(description='Utilities for concatenated DTA (_dta.txt) files')
    argparser.add_argument('--concatenate', action='store', help='Concatenate the .dta files in the working directory for this dataset')
    argparser.add_argument('--remove_sparse', action='store', help='Remove spectra with too few ions from this _dta.txt file')
    argparser.add_argument('--add_scan_tags', action='store', help='Add scan= and cs= tags to the parent ion lines of this _dta.txt file')
    argparser.add_argument('--work_dir', action='store', default='.', help='Working directory')
    argparser.add_argument('--verbose', action='count', help='If set, print more information about ongoing processing' )
    argparser.add_argument('--version', action='version', version='%(prog)s 0.5')
    params = argparser.parse_args()

    #### Set verbose
    verbose = params.verbose
    if verbose is None: verbose = 1

    if params.concatenate:
        concatenate_dta_files(params.work_dir, params.concatenate, verbose=verbose)
    if params.remove_sparse:
        remove_sparse_spectra(params.work_dir, params.remove_sparse, verbose=verbose)
    if params.add_scan_tags:
        validate_cdta_file_scan_and_cs_tags(os.path.join(params.work_dir, params.add_scan_tags), True, True)


#### For command line usage
if __name__ == "__main__": main()
