#!/usr/bin/env python3

import sys
import os
import argparse
import os.path
import shutil
def eprint(*args, **kwargs): print(*args, file=sys.stderr, **kwargs)


####################################################################################################
#### File retriever class
class FileRetriever:
    """
    Copies input files from storage directories into the working directory.
    The source directories are searched in order and the first hit wins.
    Files or directories that could not be found are listed in missing_files.
    """

    ####################################################################################################
    #### Constructor
    def __init__(self, source_dirs=None, work_dir=None, verbose=None):
        if source_dirs is None: source_dirs = []
        if work_dir is None: work_dir = os.getcwd()
        self.source_dirs = [ source_dir for source_dir in source_dirs if source_dir is not None and source_dir != '' ]
        self.work_dir = work_dir
        self.missing_files = []

        #### Set verbosity
        if verbose is None: verbose = 0
        self.verbose = verbose


    ####################################################################################################
    #### Return the full path to the first file with this name in the source directories, or None
    def find_file(self, filename):
        for source_dir in self.source_dirs:
            candidate = os.path.join(source_dir, filename)
            if os.path.isfile(candidate):
                return candidate
        return


    ####################################################################################################
    #### Return the full path to the first directory with this name in the source directories, or None
    def find_directory(self, directory_name):
        for source_dir in self.source_dirs:
            candidate = os.path.join(source_dir, directory_name)
            if os.path.isdir(candidate):
                return candidate
        return


    ####################################################################################################
    #### Copy a file into the working directory
    def retrieve_file(self, filename, source_dir=None, target_name=None):

        if target_name is None: target_name = os.path.basename(filename)

        if source_dir is not None:
            source_file = os.path.join(source_dir, filename)
            if not os.path.isfile(source_file):
                source_file = None
        else:
            source_file = self.find_file(filename)

        if source_file is None:
            self.missing_files.append(filename)
            eprint(f"ERROR: File {filename} not found in {source_dir or ', '.join(self.source_dirs)}")
            return

        target_file = os.path.join(self.work_dir, target_name)
        try:
            shutil.copy2(source_file, target_file)
        except OSError as error:
            eprint(f"ERROR: Unable to copy {source_file} to {target_file}: {error}")
            return

        if self.verbose >= 1:
            eprint(f"INFO: Retrieved {source_file}")
        return target_file


    ####################################################################################################
    #### Copy a whole directory into the working directory
    def retrieve_directory(self, directory_name):

        source_path = self.find_directory(directory_name)
        if source_path is None:
            self.missing_files.append(directory_name)
            eprint(f"ERROR: Directory {directory_name} not found in {', '.join(self.source_dirs)}")
            return

        target_path = os.path.join(self.work_dir, os.path.basename(directory_name))
        try:
            shutil.copytree(source_path, target_path, dirs_exist_ok=True)
        except (OSError, shutil.Error) as error:
            eprint(f"ERROR: Unable to copy directory {source_path} to {target_path}: {error}")
            return

        if self.verbose >= 1:
            eprint(f"INFO: Retrieved directory {source_path}")
        return target_path


####################################################################################################
#### For command-line usage
def main():

    argparser = argparse.ArgumentParser(description='Copies files from storage directories into a working directory')
    argparser.add_argument('--source_dir', action='append', help='Storage directory to search (may be repeated)')
    argparser.add_argument('--work_dir', action='store', default='.', help='Working directory to copy into')
    argparser.add_argument('--verbose', action='count', help='If set, print more information about ongoing processing' )
    argparser.add_argument('--version', action='version', version='%(prog)s 0.5')
    argparser.add_argument('files', type=str, nargs='+', help='Names of the files to retrieve')
    params = argparser.parse_args()

    #### Set verbose
    verbose = params.verbose
    if verbose is None: verbose = 1

    retriever = FileRetriever(params.source_dir, work_dir=params.work_dir, verbose=verbose)
    for filename in params.files:
        retriever.retrieve_file(filename)
    if len(retriever.missing_files) > 0:
        sys.exit(1)


#### For command line usage
if __name__ == "__main__": main()
