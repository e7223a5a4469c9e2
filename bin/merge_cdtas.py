#!/usr/bin/env python3

import sys
import os
import argparse
import json
import timeit
def eprint(*args, **kwargs): print(*args, file=sys.stderr, **kwargs)
sys.path.append(os.path.dirname(os.path.realpath(__file__))+"/../lib")
from cdta_merger import CdtaMerger


####################################################################################################
#### Main function for command-line usage
def main():

    argparser = argparse.ArgumentParser(description='Replace the title and parent ion lines of centroided _dta.txt spectra with those of the matching original spectra')
    argparser.add_argument('--verbose', action='count', help='If set, print more information about ongoing processing' )
    argparser.add_argument('--version', action='version', version='%(prog)s 0.5')
    argparser.add_argument('parent_file', type=str, help='_dta.txt file with the parent ion data (e.g. Dataset_DTA_Original.txt)')
    argparser.add_argument('fragment_file', type=str, help='_dta.txt file with the fragment ion data (e.g. Dataset_DTA_Centroided.txt)')
    argparser.add_argument('output_file', type=str, help='Merged _dta.txt file to write')
    params = argparser.parse_args()

    #### Set verbose level
    verbose = params.verbose
    if verbose is None:
        verbose = 0

    t0 = timeit.default_timer()
    merger = CdtaMerger(verbose=verbose)
    result = merger.merge_cdtas(params.parent_file, params.fragment_file, params.output_file)

    print(json.dumps(result.to_dict(), indent=2, sort_keys=True))

    t1 = timeit.default_timer()
    if verbose >= 1:
        eprint(f"INFO: Elapsed time: {t1-t0:.2f} sec")

    if result.status != 'OK':
        eprint(f"ERROR: {result.error}")
        sys.exit(1)


#### For command line usage
if __name__ == "__main__": main()
