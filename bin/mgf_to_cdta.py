#!/usr/bin/env python3

import sys
import os
import argparse
import timeit
def eprint(*args, **kwargs): print(*args, file=sys.stderr, **kwargs)
sys.path.append(os.path.dirname(os.path.realpath(__file__))+"/../lib")
from mgf_converter import MgfConverter, CDTA_SUFFIX


####################################################################################################
#### Main function for command-line usage
def main():

    argparser = argparse.ArgumentParser(description='Convert an MGF file to a concatenated DTA (_dta.txt) file, optionally mapping the titles to scans with the source mzML file')
    argparser.add_argument('--mzml', action='store', help='mzML file the MGF file was made from; its spectrum ids supply the scan numbers')
    argparser.add_argument('--dataset', action='store', help='Dataset name (defaults to the MGF file name without extension)')
    argparser.add_argument('--output', action='store', help='Output file (defaults to <dataset>_dta.txt beside the MGF file)')
    argparser.add_argument('--include_extra_info', action='count', help='If set, add scan= and cs= tags to the parent ion lines')
    argparser.add_argument('--minimum_ions', action='store', type=int, default=0, help='Minimum number of ions per spectrum')
    argparser.add_argument('--verbose', action='count', help='If set, print more information about ongoing processing' )
    argparser.add_argument('--version', action='version', version='%(prog)s 0.5')
    argparser.add_argument('file', type=str, help='MGF file to convert')
    params = argparser.parse_args()

    #### Set verbose level
    verbose = params.verbose
    if verbose is None:
        verbose = 0

    mgf_file = os.path.abspath(params.file)
    work_dir = os.path.dirname(mgf_file)
    dataset_name = params.dataset
    if dataset_name is None:
        dataset_name = os.path.splitext(os.path.basename(mgf_file))[0]
    output_file = params.output
    if output_file is None:
        output_file = os.path.join(work_dir, dataset_name + CDTA_SUFFIX)

    t0 = timeit.default_timer()
    converter = MgfConverter(work_dir,
        include_extra_info_on_parent_ion_line=params.include_extra_info is not None,
        minimum_ions_per_spectrum=params.minimum_ions, verbose=verbose)

    if params.mzml is not None:
        if converter.update_mgf_file_title_lines_using_mzml(params.mzml, mgf_file, dataset_name) is None:
            eprint(f"ERROR: {converter.error_message}")
            sys.exit(1)

    if converter.write_cdta_file(mgf_file, output_file, dataset_name) is None:
        eprint(f"ERROR: {converter.error_message}")
        sys.exit(1)

    t1 = timeit.default_timer()
    print(f"Wrote {converter.spectra_count_written} of {converter.spectra_count_read} spectra to {output_file} in {t1-t0:.2f} sec")


#### For command line usage
if __name__ == "__main__": main()
