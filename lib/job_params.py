#!/usr/bin/env python3

import sys
import os
import argparse
import os.path
import json
from lxml import etree
def eprint(*args, **kwargs): print(*args, file=sys.stderr, **kwargs)

JOB_PARAMETERS_SECTION = 'JobParameters'
STEP_PARAMETERS_SECTION = 'StepParameters'

TRUE_STRINGS = [ 'true', 'yes', 'y', '1', 'on' ]
FALSE_STRINGS = [ 'false', 'no', 'n', '0', 'off', '' ]


####################################################################################################
#### Convert a parameter value to the type of the supplied default
def coerce_value(value, default):

    if value is None:
        return default

    #### bool must be tested before int since bool is a subclass of int
    if isinstance(default, bool):
        if isinstance(value, bool):
            return value
        text = str(value).strip().lower()
        if text in TRUE_STRINGS:
            return True
        if text in FALSE_STRINGS:
            return False
        eprint(f"WARNING: Cannot interpret '{value}' as a boolean; using default {default}")
        return default

    if isinstance(default, int):
        try:
            return int(str(value).strip())
        except ValueError:
            try:
                return int(float(str(value).strip()))
            except ValueError:
                eprint(f"WARNING: Cannot interpret '{value}' as an integer; using default {default}")
                return default

    if isinstance(default, float):
        try:
            return float(str(value).strip())
        except ValueError:
            eprint(f"WARNING: Cannot interpret '{value}' as a number; using default {default}")
            return default

    return str(value)


####################################################################################################
#### Job parameters class
class JobParameters:
    """
    Job parameters for one analysis job step, organized into named sections.
    The XML form is the one written by the Analysis Manager:

        <sections>
          <section name="JobParameters">
            <item key="DatasetName" value="QC_Shew_16_01_R1" />
          </section>
        </sections>

    Lookups either name a section or search all sections in file order.
    Values are returned converted to the type of the default.
    """

    ####################################################################################################
    #### Constructor
    def __init__(self, sections=None, verbose=None):
        self.sections = {}
        self.section_order = []
        if sections is not None:
            for section_name, items in sections.items():
                for key, value in items.items():
                    self.add_additional_parameter(section_name, key, value)

        self.result_files_to_skip = set()
        self.result_file_extensions_to_skip = set()
        self.result_files_to_keep = set()
        self.server_files_to_delete = set()

        #### Set verbosity
        if verbose is None: verbose = 0
        self.verbose = verbose


    ####################################################################################################
    #### Read a job parameters XML file
    def read_file(self, filename):

        if not os.path.isfile(filename):
            eprint(f"ERROR: Job parameters file '{filename}' not found or not a file")
            return

        try:
            tree = etree.parse(filename)
        except etree.XMLSyntaxError as error:
            eprint(f"ERROR: Cannot parse job parameters XML file '{filename}': {error}")
            return

        n_items = 0
        for section in tree.getroot().iter('section'):
            section_name = section.get('name')
            if section_name is None:
                eprint(f"WARNING: Skipping a section without a name in '{filename}'")
                continue
            for item in section.iter('item'):
                key = item.get('key')
                if key is None:
                    continue
                self.add_additional_parameter(section_name, key, item.get('value', ''))
                n_items += 1

        if self.verbose >= 1:
            eprint(f"INFO: Read {n_items} job parameters in {len(self.section_order)} sections from '{filename}'")
        return 'OK'


    ####################################################################################################
    #### Write the job parameters to an XML file
    def write_file(self, filename):
        root = etree.Element('sections')
        for section_name in self.section_order:
            section = etree.SubElement(root, 'section', name=section_name)
            for key, value in self.sections[section_name].items():
                if isinstance(value, bool):
                    value = str(value)
                etree.SubElement(section, 'item', key=key, value=str(value))
        etree.ElementTree(root).write(filename, pretty_print=True, xml_declaration=True, encoding='utf-8')


    ####################################################################################################
    #### Add or replace a parameter
    def add_additional_parameter(self, section_name, name, value):
        if section_name not in self.sections:
            self.sections[section_name] = {}
            self.section_order.append(section_name)
        self.sections[section_name][name] = value


    ####################################################################################################
    #### Return True if the parameter is defined in the given section, or in any section
    def has_parameter(self, name, section_name=None):
        if section_name is not None:
            return name in self.sections.get(section_name, {})
        for section in self.section_order:
            if name in self.sections[section]:
                return True
        return False


    ####################################################################################################
    #### Get a parameter: get_job_parameter(name, default) or get_job_parameter(section, name, default)
    def get_job_parameter(self, *args):

        if len(args) == 2:
            name, default = args
            value = None
            for section_name in self.section_order:
                if name in self.sections[section_name]:
                    value = self.sections[section_name][name]
                    break
        elif len(args) == 3:
            section_name, name, default = args
            value = self.sections.get(section_name, {}).get(name)
        else:
            raise TypeError(f"get_job_parameter() takes 2 or 3 arguments ({len(args)} given)")

        return coerce_value(value, default)


    ####################################################################################################
    #### Shortcuts for common parameters
    def get_dataset_name(self):
        dataset_name = self.get_job_parameter(JOB_PARAMETERS_SECTION, 'DatasetName', '')
        if dataset_name == '':
            dataset_name = self.get_job_parameter('DatasetNum', '')
        return dataset_name

    def get_job_number(self):
        return self.get_job_parameter('Job', 0)


    ####################################################################################################
    #### Store a dictionary as a single packed parameter of name=value pairs
    def store_packed_dictionary(self, name, dictionary, section_name=JOB_PARAMETERS_SECTION):
        packed = ','.join([ f"{key}={dictionary[key]}" for key in sorted(dictionary) ])
        self.add_additional_parameter(section_name, name, packed)


    ####################################################################################################
    #### Retrieve a packed dictionary; values stay strings
    def get_packed_dictionary(self, name, section_name=JOB_PARAMETERS_SECTION):
        dictionary = {}
        packed = self.get_job_parameter(section_name, name, '')
        if packed == '':
            return dictionary
        for pair in packed.split(','):
            position = pair.rfind('=')
            if position < 1:
                eprint(f"WARNING: Malformed entry '{pair}' in packed parameter {name}")
                continue
            dictionary[pair[:position]] = pair[position+1:]
        return dictionary


    ####################################################################################################
    #### Result file bookkeeping
    def add_result_file_to_skip(self, filename):
        self.result_files_to_skip.add(os.path.basename(filename).lower())

    def add_result_file_extension_to_skip(self, extension):
        self.result_file_extensions_to_skip.add(extension.lower())

    def add_result_file_to_keep(self, filename):
        self.result_files_to_keep.add(os.path.basename(filename).lower())

    def add_server_file_to_delete(self, filename):
        self.server_files_to_delete.add(filename)


    ####################################################################################################
    #### Return True if a file in the working directory should not be copied to the results
    def skip_result_file(self, filename):
        name = os.path.basename(filename).lower()
        if name in self.result_files_to_keep:
            return False
        if name in self.result_files_to_skip:
            return True
        for extension in self.result_file_extensions_to_skip:
            if name.endswith(extension):
                return True
        return False


####################################################################################################
#### Manager parameters class
class ManagerParameters:
    """
    Flat key/value settings of the manager itself, such as tool locations
    (ProteoWizardDir, XcalDLLPath, lcqdtaloc, RawConverterProgLoc, RProgLoc),
    ConnectionString and MgrName. Read from a JSON file or built from a dict.
    """

    ####################################################################################################
    #### Constructor
    def __init__(self, params=None, verbose=None):
        self.params = {}
        if params is not None:
            self.params.update(params)

        #### Set verbosity
        if verbose is None: verbose = 0
        self.verbose = verbose


    ####################################################################################################
    #### Read a JSON settings file
    def read_file(self, filename):

        if not os.path.isfile(filename):
            eprint(f"ERROR: Manager parameters file '{filename}' not found or not a file")
            return

        try:
            with open(filename) as infile:
                params = json.load(infile)
        except json.JSONDecodeError as error:
            eprint(f"ERROR: Cannot parse JSON from manager parameters file '{filename}': {error}")
            return

        if not isinstance(params, dict):
            eprint(f"ERROR: File '{filename}' is JSON, but does not contain a dictionary of manager parameters")
            return

        self.params.update(params)
        if self.verbose >= 1:
            eprint(f"INFO: Read {len(params)} manager parameters from '{filename}'")
        return 'OK'


    ####################################################################################################
    #### Get a parameter converted to the type of the default
    def get_param(self, name, default=''):
        return coerce_value(self.params.get(name), default)


    ####################################################################################################
    #### Set a parameter
    def set_param(self, name, value):
        self.params[name] = value


####################################################################################################
#### For command-line usage
def main():

    argparser = argparse.ArgumentParser(description='Shows the contents of an Analysis Manager job parameters file')
    argparser.add_argument('--verbose', action='count', help='If set, print more information about ongoing processing' )
    argparser.add_argument('--version', action='version', version='%(prog)s 0.5')
    argparser.add_argument('file', type=str, help='Job parameters XML file to read')
    params = argparser.parse_args()

    #### Set verbose
    verbose = params.verbose
    if verbose is None: verbose = 1

    job_params = JobParameters(verbose=verbose)
    if job_params.read_file(params.file) is None:
        return
    print(json.dumps(job_params.sections, indent=2, sort_keys=True))


#### For command line usage
if __name__ == "__main__": main()
