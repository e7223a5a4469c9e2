import sys
import os
import json
import subprocess
from deepdiff import DeepDiff
sys.path.append(os.path.dirname(os.path.realpath(__file__))+"/../lib")
from cdta_reader import make_dta_title_line

BIN_DIR = os.path.dirname(os.path.realpath(__file__)) + "/../bin"


def write_cdta(filename, spectra):
    with open(filename, 'w') as outfile:
        for title, parent_ion_line, peaks in spectra:
            outfile.write('\n' + make_dta_title_line(title) + '\n' + parent_ion_line + '\n')
            for peak in peaks:
                outfile.write(peak + '\n')


def test_merge_cdtas_command_line(tmp_path):
    parent_file = str(tmp_path / 'DS_DTA_Original.txt')
    fragment_file = str(tmp_path / 'DS_DTA_Centroided.txt')
    output_file = str(tmp_path / 'DS_dta.txt')

    write_cdta(parent_file, [
        ( 'DS.100.100.2.dta', '1000.50 2', [ '150.1 10' ] ),
        ( 'DS.300.300.2.dta', '3000.50 2', [ '350.1 10' ] ),
    ])
    write_cdta(fragment_file, [
        ( 'DS.0100.0100.2.dta', '1000.48 2   scan=100 cs=2', [ '150.00000 100.00' ] ),
    ])

    completed = subprocess.run([ sys.executable, BIN_DIR + '/merge_cdtas.py', parent_file, fragment_file, output_file ],
        capture_output=True, text=True)
    assert completed.returncode == 0

    result = json.loads(completed.stdout)
    expected = {
        'parent_file': parent_file,
        'fragment_file': fragment_file,
        'output_file': output_file,
        'status': 'OK',
        'code': 'OK',
        'error': None,
        'warnings': [
            'MergeCDTAs could not find spectrum with StartScan=300 and EndScan=300 for DS_DTA_Original.txt',
            'Skipped 1 spectra in MergeCDTAs since they were not created by MSConvert',
        ],
        'n_parent_spectra': 2,
        'n_fragment_spectra': 1,
        'n_merged': 1,
        'n_skipped': 1,
        'n_rewinds': 0,
    }
    diff = DeepDiff(expected, result)
    assert diff == {}

    with open(output_file) as infile:
        assert infile.read() == '\n' + make_dta_title_line('DS.100.100.2.dta') + '\n1000.50 2\n150.00000 100.00\n'


def test_merge_cdtas_command_line_missing_file(tmp_path):
    completed = subprocess.run([ sys.executable, BIN_DIR + '/merge_cdtas.py', str(tmp_path / 'a.txt'),
        str(tmp_path / 'b.txt'), str(tmp_path / 'c.txt') ], capture_output=True, text=True)
    assert completed.returncode == 1
    assert json.loads(completed.stdout)['code'] == 'CantOpenParentFile'
