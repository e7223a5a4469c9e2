#!/usr/bin/env python3

import sys
import os
import argparse
import json
import timeit
def eprint(*args, **kwargs): print(*args, file=sys.stderr, **kwargs)
sys.path.append(os.path.dirname(os.path.realpath(__file__))+"/../lib")
from job_params import JobParameters, ManagerParameters
from status_file import StatusFile
from qcart_resources import QcartResources
from qcart_tool_runner import QcartToolRunner
from tool_runner_base import CLOSEOUT_SUCCESS


####################################################################################################
#### Main function for command-line usage
def main():

    argparser = argparse.ArgumentParser(description='Run a QC-ART job: stage the baseline and metrics data, run the QC-ART R script and store the score')
    argparser.add_argument('--job_params', action='store', required=True, help='Job parameters XML file')
    argparser.add_argument('--mgr_params', action='store', required=True, help='Manager parameters JSON file')
    argparser.add_argument('--work_dir', action='store', default='.', help='Working directory (default is the current directory)')
    argparser.add_argument('--transfer_dir', action='store', help='Directory to copy the results to')
    argparser.add_argument('--status_file', action='store', help='If set, write the job status as JSON to this file')
    argparser.add_argument('--verbose', action='count', help='If set, print more information about ongoing processing' )
    argparser.add_argument('--version', action='version', version='%(prog)s 0.5')
    params = argparser.parse_args()

    #### Set verbose level
    verbose = params.verbose
    if verbose is None:
        verbose = 0

    t0 = timeit.default_timer()

    job_params = JobParameters(verbose=verbose)
    if job_params.read_file(params.job_params) is None:
        sys.exit(1)
    mgr_params = ManagerParameters(verbose=verbose)
    if mgr_params.read_file(params.mgr_params) is None:
        sys.exit(1)

    work_dir = os.path.abspath(params.work_dir)
    summary = { 'dataset': job_params.get_dataset_name(), 'job': job_params.get_job_number() }

    resources = QcartResources(job_params, mgr_params, work_dir=work_dir, verbose=verbose)
    summary['resources'] = resources.get_resources()
    if summary['resources'] != CLOSEOUT_SUCCESS:
        summary['message'] = resources.message
        print(json.dumps(summary, indent=2, sort_keys=True))
        sys.exit(1)

    status_file = StatusFile(params.status_file, verbose=verbose)
    tool_runner = QcartToolRunner(job_params, mgr_params, status_file=status_file, work_dir=work_dir,
        transfer_dir=params.transfer_dir, database=resources.database, verbose=verbose)
    summary['result'] = tool_runner.run_tool()
    summary['message'] = tool_runner.message
    summary['qcart'] = tool_runner.qcart_value

    print(json.dumps(summary, indent=2, sort_keys=True))

    t1 = timeit.default_timer()
    if verbose >= 1:
        eprint(f"INFO: Elapsed time: {t1-t0:.2f} sec")

    if summary['result'] != CLOSEOUT_SUCCESS:
        sys.exit(1)


#### For command line usage
if __name__ == "__main__": main()
