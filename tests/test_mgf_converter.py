import sys
import os
import numpy
sys.path.append(os.path.dirname(os.path.realpath(__file__))+"/../lib")
from cdta_reader import CdtaTextFileReader
from mgf_converter import MgfConverter, compute_mh

MGF_TEXT = """BEGIN IONS
TITLE=QC_Shew.0005.0005.2
PEPMASS=500.5 1000
CHARGE=2+
100.1 10
200.2 20
300.3 30
END IONS

BEGIN IONS
TITLE=controllerType=0 controllerNumber=1 scan=9
PEPMASS=400.25
SCANS=9
CHARGE=3+
110.1 11
END IONS
"""


def write_mgf(work_dir, dataset_name, text=MGF_TEXT):
    mgf_file = os.path.join(work_dir, dataset_name + '.mgf')
    with open(mgf_file, 'w') as outfile:
        outfile.write(text)
    return mgf_file


def read_all(filename):
    spectra = []
    with CdtaTextFileReader() as reader:
        reader.open_file(filename)
        while True:
            header = reader.read_next_spectrum()
            if header is None:
                break
            spectra.append( (header, reader.get_most_recent_peak_list()) )
    return spectra


def test_compute_mh():
    assert abs(compute_mh(500.5, 2) - 999.99272353312) < 1e-6
    assert abs(compute_mh(1000.0, 1) - 1000.0) < 1e-9


def test_convert_mgf_to_dta(tmp_path):
    work_dir = str(tmp_path)
    write_mgf(work_dir, 'QC_Shew')

    converter = MgfConverter(work_dir, include_extra_info_on_parent_ion_line=True)
    assert converter.convert_mgf_to_dta('dot_mgf_files', 'QC_Shew')
    assert converter.spectra_count_read == 2
    assert converter.spectra_count_written == 2

    spectra = read_all(os.path.join(work_dir, 'QC_Shew_dta.txt'))
    header, peaks = spectra[0]
    assert header.title == 'QC_Shew.0005.0005.2.dta'
    assert header.parent_ion_line == '999.99272 2   scan=5 cs=2'
    assert peaks == [ (100.1, 10.0), (200.2, 20.0), (300.3, 30.0) ]

    #### Scan numbers fall back to the SCANS parameter
    header, peaks = spectra[1]
    assert (header.scan_number_start, header.scan_number_end, header.charge) == (9, 9, 3)


def test_minimum_ions_filter(tmp_path):
    work_dir = str(tmp_path)
    mgf_file = write_mgf(work_dir, 'QC_Shew')
    output_file = os.path.join(work_dir, 'out_dta.txt')

    converter = MgfConverter(work_dir, minimum_ions_per_spectrum=2)
    assert converter.write_cdta_file(mgf_file, output_file, 'QC_Shew') == 'OK'
    assert converter.spectra_count_written == 1
    assert converter.spectra_count_filtered == 1
    assert read_all(output_file)[0][0].parent_ion_line == '999.99272 2'


def test_missing_mgf_file(tmp_path):
    converter = MgfConverter(str(tmp_path))
    assert not converter.convert_mgf_to_dta('dot_mgf_files', 'Missing')
    assert converter.error_message == 'MGFtoDTA_Error: Data file Missing.mgf not found'

    converter.add_error('Second problem')
    assert converter.error_message == 'MGFtoDTA_Error: Data file Missing.mgf not found; MGFtoDTA_Error: Second problem'


def test_determine_charges():
    converter = MgfConverter('.')
    mz_array = numpy.array([ 100.0, 200.0, 300.0 ])
    intensity_array = numpy.array([ 10.0, 10.0, 10.0 ])

    assert converter.determine_charges(500.0, [ 2 ], mz_array, intensity_array) == [ 2 ]
    assert converter.determine_charges(500.0, [], mz_array, intensity_array) == [ 1 ]
    assert converter.determine_charges(150.0, [], mz_array, intensity_array) == [ 3 ]
    assert converter.determine_charges(500.0, [], mz_array, numpy.zeros(3)) == [ 2, 3 ]

    converter = MgfConverter('.', force_charge_addn_for_predefined_2plus_or_3plus=True)
    assert converter.determine_charges(500.0, [ 2 ], mz_array, intensity_array) == [ 2, 3 ]


def test_update_mgf_titles_using_mzml(tmp_path):
    work_dir = str(tmp_path)
    mgf_file = write_mgf(work_dir, 'QC_Shew')
    mzml_file = os.path.join(work_dir, 'QC_Shew.mzML')
    with open(mzml_file, 'w') as outfile:
        outfile.write('<mzML/>\n')

    converter = MgfConverter(work_dir)
    converter.parse_mzml_file = lambda filename: ( True, {
        'controllerType=0 controllerNumber=1 scan=9': (9, 9, 3),
    } )
    assert converter.update_mgf_file_title_lines_using_mzml(mzml_file, mgf_file, 'QC_Shew') == 'OK'

    with open(mgf_file) as infile:
        titles = [ line.strip() for line in infile if line.startswith('TITLE=') ]
    assert titles == [ 'TITLE=QC_Shew.0005.0005.2', 'TITLE=QC_Shew.0009.0009.3' ]

    assert converter.update_mgf_file_title_lines_using_mzml(os.path.join(work_dir, 'missing.mzML'), mgf_file, 'QC_Shew') is None
    assert 'mzML file not found' in converter.error_message
