#!/usr/bin/env python3

import sys
import os
import argparse
import os.path
import re
import timeit
import tempfile
import numpy
def eprint(*args, **kwargs): print(*args, file=sys.stderr, **kwargs)

#### Import technical modules and pyteomics
from pyteomics import mgf, mzml
from pyteomics.auxiliary import PyteomicsError

from cdta_reader import extract_scan_info_from_dta_header, make_dta_title_line

PROTON_MASS = 1.00727646688
CDTA_SUFFIX = '_dta.txt'
MAX_ERROR_MESSAGE_LENGTH = 300
NATIVE_ID_REGEX = re.compile(r'''NativeID:["']([^"']+)["']''')


####################################################################################################
#### Compute the MH+ mass for a precursor m/z and charge
def compute_mh(precursor_mz, charge):
    return (precursor_mz - PROTON_MASS) * charge + PROTON_MASS


####################################################################################################
#### MGF converter class
class MgfConverter:
    """
    Converts a Mascot Generic Format file into a concatenated DTA file. For
    data that came from mzML, the MGF TITLE lines can first be rewritten to the
    Dataset.StartScan.EndScan.Charge convention using the mzML spectrum ids.
    """

    ####################################################################################################
    #### Constructor
    def __init__(self, work_dir, include_extra_info_on_parent_ion_line=False, minimum_ions_per_spectrum=0,
                 maximum_ions_per_spectrum=0, scan_start=0, scan_stop=0, minimum_parent_ion_mz=0.0,
                 guesstimate_charge_for_all_spectra=False, force_charge_addn_for_predefined_2plus_or_3plus=False,
                 threshold_ion_pct_for_single_charge=90, threshold_ion_pct_for_double_charge=90, verbose=None):

        self.work_dir = work_dir
        self.include_extra_info_on_parent_ion_line = include_extra_info_on_parent_ion_line
        self.minimum_ions_per_spectrum = minimum_ions_per_spectrum
        self.maximum_ions_per_spectrum = maximum_ions_per_spectrum
        self.scan_start = scan_start
        self.scan_stop = scan_stop
        self.minimum_parent_ion_mz = minimum_parent_ion_mz
        self.guesstimate_charge_for_all_spectra = guesstimate_charge_for_all_spectra
        self.force_charge_addn_for_predefined_2plus_or_3plus = force_charge_addn_for_predefined_2plus_or_3plus
        self.threshold_ion_pct_for_single_charge = threshold_ion_pct_for_single_charge
        self.threshold_ion_pct_for_double_charge = threshold_ion_pct_for_double_charge

        self.error_message = ''
        self.spectra_count_read = 0
        self.spectra_count_written = 0
        self.spectra_count_filtered = 0

        #### Set verbosity
        if verbose is None: verbose = 0
        self.verbose = verbose


    ####################################################################################################
    #### Accumulate an error message
    def add_error(self, message):
        eprint(f"ERROR: {message}")
        if self.error_message == '':
            self.error_message = f"MGFtoDTA_Error: {message}"
        elif len(self.error_message) < MAX_ERROR_MESSAGE_LENGTH:
            self.error_message += f"; MGFtoDTA_Error: {message}"


    ####################################################################################################
    #### Convert Dataset.mgf in the working directory to Dataset_dta.txt
    def convert_mgf_to_dta(self, raw_data_type, dataset_name):

        self.error_message = ''
        if self.verbose >= 1:
            eprint(f"INFO: Converting .MGF file to _DTA.txt")

        mgf_file = os.path.join(self.work_dir, dataset_name + '.mgf')

        #### For mzML data, map the MGF titles to scan numbers using the mzML spectrum ids
        if raw_data_type == 'mzML':
            mzml_file = os.path.join(self.work_dir, dataset_name + '.mzML')
            result = self.update_mgf_file_title_lines_using_mzml(mzml_file, mgf_file, dataset_name)
            if result is None:
                return False

        output_file = os.path.join(self.work_dir, dataset_name + CDTA_SUFFIX)
        result = self.write_cdta_file(mgf_file, output_file, dataset_name)
        return result is not None


    ####################################################################################################
    #### Read the mzML file and build a map of spectrum id -> (start, end, charge)
    def parse_mzml_file(self, mzml_file):
        """
        Returns (auto_number_scans, spectrum_id_to_scan_info). If any spectrum id
        is not already Start.End.Charge, scans from that point on are numbered
        sequentially and auto_number_scans is True.
        """

        spectrum_id_to_scan_info = {}
        auto_number_scans = False
        scan_number_current = 0

        with mzml.read(mzml_file, decode_binary=False) as reader:
            for spectrum in reader:
                spectrum_id = spectrum.get('id', '')
                if spectrum_id == '':
                    continue

                scan_info = extract_scan_info_from_dta_header(spectrum_id)
                if scan_info is None:
                    auto_number_scans = True

                if auto_number_scans:
                    scan_number_current += 1
                    scan_start, scan_end, charge = scan_number_current, scan_number_current, 0
                else:
                    scan_start, scan_end, charge = scan_info
                    scan_number_current = scan_start

                #### Use the charge of the selected ion when there is one
                try:
                    selected_ion = spectrum['precursorList']['precursor'][0]['selectedIonList']['selectedIon'][0]
                    charge = int(selected_ion['charge state'])
                except (KeyError, IndexError, TypeError, ValueError):
                    pass

                spectrum_id_to_scan_info[spectrum_id] = (scan_start, scan_end, charge)

        return auto_number_scans, spectrum_id_to_scan_info


    ####################################################################################################
    #### Rewrite the MGF TITLE lines as Dataset.StartScan.EndScan.Charge when the mzML ids need it
    def update_mgf_file_title_lines_using_mzml(self, mzml_file, mgf_file, dataset_name):

        if not os.path.isfile(mzml_file):
            self.add_error(f"mzML file not found: {mzml_file}")
            return
        if not os.path.isfile(mgf_file):
            self.add_error(f"MGF file not found: {mgf_file}")
            return

        if self.verbose >= 1:
            eprint(f"INFO: Parsing the .mzML file to create the spectrum ID to scan number mapping")

        try:
            auto_number_scans, spectrum_id_to_scan_info = self.parse_mzml_file(mzml_file)
        except (PyteomicsError, OSError) as error:
            self.add_error(f"Error reading mzML file {os.path.basename(mzml_file)}: {error}")
            return

        if not auto_number_scans:
            if self.verbose >= 1:
                eprint(f"INFO: Spectrum IDs in the mzML file were in the format StartScan.EndScan.Charge; no need to update the MGF file")
            return 'OK'

        if self.verbose >= 1:
            eprint(f"INFO: Updating the Title lines in the MGF file")

        n_updated = 0
        temp_handle, temp_file = tempfile.mkstemp(suffix='.mgf', dir=os.path.dirname(os.path.abspath(mgf_file)))
        with os.fdopen(temp_handle, 'w') as outfile, open(mgf_file) as infile:
            for line in infile:
                line = line.rstrip('\r\n')
                if line.startswith('TITLE='):
                    title = line[len('TITLE='):]
                    scan_info = spectrum_id_to_scan_info.get(title)
                    if scan_info is None:
                        match = NATIVE_ID_REGEX.search(title)
                        if match:
                            scan_info = spectrum_id_to_scan_info.get(match.group(1))
                    if scan_info is not None:
                        scan_start, scan_end, charge = scan_info
                        line = f"TITLE={dataset_name}.{scan_start:04d}.{scan_end:04d}."
                        if charge > 0:
                            line += str(charge)
                        n_updated += 1
                outfile.write(line + '\n')

        os.replace(temp_file, mgf_file)
        if self.verbose >= 1:
            eprint(f"INFO: Update complete; replaced {n_updated} title lines in {os.path.basename(mgf_file)}")
        return 'OK'


    ####################################################################################################
    #### Decide which charges to write for a spectrum
    def determine_charges(self, precursor_mz, charges, mz_array, intensity_array):

        if len(charges) > 0 and not self.guesstimate_charge_for_all_spectra:
            if self.force_charge_addn_for_predefined_2plus_or_3plus and (2 in charges or 3 in charges):
                return sorted(set(charges) | { 2, 3 })
            return charges

        total_intensity = float(numpy.sum(intensity_array))
        if total_intensity <= 0 or precursor_mz <= 0:
            return [ 2, 3 ]

        #### Nearly all fragment intensity below the precursor m/z means a singly charged precursor
        pct_below_precursor = float(numpy.sum(intensity_array[mz_array < precursor_mz])) / total_intensity * 100
        if pct_below_precursor >= self.threshold_ion_pct_for_single_charge:
            return [ 1 ]

        doubly_charged_mh = compute_mh(precursor_mz, 2)
        pct_below_2plus_mh = float(numpy.sum(intensity_array[mz_array < doubly_charged_mh])) / total_intensity * 100
        if pct_below_2plus_mh >= self.threshold_ion_pct_for_double_charge:
            return [ 2, 3 ]
        return [ 3 ]


    ####################################################################################################
    #### Write the CDTA file from the MGF file
    def write_cdta_file(self, mgf_file, output_file, dataset_name):

        t0 = timeit.default_timer()
        self.spectra_count_read = 0
        self.spectra_count_written = 0
        self.spectra_count_filtered = 0

        if not os.path.isfile(mgf_file):
            self.add_error(f"Data file {os.path.basename(mgf_file)} not found")
            return

        try:
            with mgf.read(mgf_file, convert_arrays=1, read_charges=True) as reader, open(output_file, 'w') as outfile:
                for spectrum in reader:
                    self.spectra_count_read += 1
                    self.write_spectrum(spectrum, outfile, dataset_name)
        except (PyteomicsError, ValueError) as error:
            self.add_error(f"Error reading MGF file {os.path.basename(mgf_file)}: {error}")
            return

        t1 = timeit.default_timer()
        if self.verbose >= 1:
            eprint(f"INFO: Wrote {self.spectra_count_written} spectra from {self.spectra_count_read} MGF spectra "
                f"to {os.path.basename(output_file)} in {t1-t0:.2f} sec")
        return 'OK'


    ####################################################################################################
    #### Write one MGF spectrum as one or more CDTA spectra
    def write_spectrum(self, spectrum, outfile, dataset_name):

        params = spectrum['params']
        title = params.get('title', '')
        mz_array = numpy.asarray(spectrum['m/z array'], dtype=float)
        intensity_array = numpy.asarray(spectrum['intensity array'], dtype=float)

        #### Scan numbers come from the title, else the SCANS parameter, else the spectrum count
        scan_info = extract_scan_info_from_dta_header(title)
        if scan_info is not None:
            scan_start, scan_end, title_charge = scan_info
        else:
            title_charge = 0
            try:
                scan_start = int(str(params['scans']).split('-')[0])
                scan_end = int(str(params['scans']).split('-')[-1])
            except (KeyError, ValueError):
                scan_start = scan_end = self.spectra_count_read

        if self.scan_start > 0 and scan_start < self.scan_start:
            self.spectra_count_filtered += 1
            return
        if self.scan_stop > 0 and scan_start > self.scan_stop:
            self.spectra_count_filtered += 1
            return

        pepmass = params.get('pepmass')
        if pepmass is None or pepmass[0] is None:
            self.add_error(f"Spectrum '{title}' does not have a PEPMASS")
            return
        precursor_mz = float(pepmass[0])
        if precursor_mz < self.minimum_parent_ion_mz:
            self.spectra_count_filtered += 1
            return

        if len(mz_array) < self.minimum_ions_per_spectrum:
            self.spectra_count_filtered += 1
            return

        #### Keep only the most intense ions, then restore m/z order
        if self.maximum_ions_per_spectrum > 0 and len(mz_array) > self.maximum_ions_per_spectrum:
            keep = numpy.argsort(intensity_array)[-self.maximum_ions_per_spectrum:]
            keep = numpy.sort(keep)
            mz_array = mz_array[keep]
            intensity_array = intensity_array[keep]

        charges = []
        if params.get('charge') is not None:
            charges = [ abs(int(charge)) for charge in params['charge'] if int(charge) != 0 ]
        if len(charges) == 0 and title_charge > 0:
            charges = [ title_charge ]

        for write_charge in self.determine_charges(precursor_mz, charges, mz_array, intensity_array):
            mh = compute_mh(precursor_mz, write_charge)
            outfile.write('\n')
            outfile.write(make_dta_title_line(f"{dataset_name}.{scan_start:04d}.{scan_end:04d}.{write_charge}.dta") + '\n')
            if self.include_extra_info_on_parent_ion_line:
                outfile.write(f"{mh:.5f} {write_charge}   scan={scan_start} cs={write_charge}\n")
            else:
                outfile.write(f"{mh:.5f} {write_charge}\n")
            for mz, intensity in zip(mz_array, intensity_array):
                outfile.write(f"{mz:.5f} {intensity:.2f}\n")
            self.spectra_count_written += 1


####################################################################################################
#### For command-line usage
def main():

    argparser = argparse.ArgumentParser(description='Converts an MGF file to a concatenated DTA (_dta.txt) file')
    argparser.add_argument('--dataset', action='store', help='Dataset name (default is the MGF file name without extension)')
    argparser.add_argument('--raw_data_type', action='store', default='dot_mgf_files', help='Raw data type; mzML triggers title remapping from Dataset.mzML')
    argparser.add_argument('--include_extra_info', action='count', help='If set, add scan= and cs= tags to the parent ion lines')
    argparser.add_argument('--minimum_ions', action='store', type=int, default=0, help='Minimum number of ions per spectrum')
    argparser.add_argument('--verbose', action='count', help='If set, print more information about ongoing processing' )
    argparser.add_argument('--version', action='version', version='%(prog)s 0.5')
    argparser.add_argument('file', type=str, help='MGF file to convert')
    params = argparser.parse_args()

    #### Set verbose
    verbose = params.verbose
    if verbose is None: verbose = 1

    dataset_name = params.dataset
    if dataset_name is None:
        dataset_name = os.path.splitext(os.path.basename(params.file))[0]

    converter = MgfConverter(os.path.dirname(os.path.abspath(params.file)),
        include_extra_info_on_parent_ion_line=params.include_extra_info is not None,
        minimum_ions_per_spectrum=params.minimum_ions, verbose=verbose)
    if not converter.convert_mgf_to_dta(params.raw_data_type, dataset_name):
        eprint(f"ERROR: {converter.error_message}")
        sys.exit(1)


#### For command line usage
if __name__ == "__main__": main()
