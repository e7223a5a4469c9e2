import sys
import os
sys.path.append(os.path.dirname(os.path.realpath(__file__))+"/../lib")
from cdta_reader import CdtaTextFileReader, make_dta_title_line
from cdta_utilities import dta_file_sort_key, concatenate_dta_files, remove_sparse_spectra
from cdta_utilities import validate_cdta_file_scan_and_cs_tags, zip_file, unzip_file


def write_dta(work_dir, name, lines):
    with open(os.path.join(work_dir, name), 'w') as outfile:
        outfile.write('\n'.join(lines) + '\n')


def read_headers(filename):
    headers = []
    with CdtaTextFileReader() as reader:
        reader.open_file(filename)
        while True:
            header = reader.read_next_spectrum()
            if header is None:
                break
            headers.append(header)
    return headers


def test_dta_file_sort_key():
    names = [ 'DS.100.100.3.dta', 'DS.20.20.2.dta', 'DS.100.100.2.dta', 'junk.dta' ]
    assert sorted(names, key=dta_file_sort_key) == [ 'DS.20.20.2.dta', 'DS.100.100.2.dta', 'DS.100.100.3.dta', 'junk.dta' ]


def test_concatenate_dta_files(tmp_path):
    work_dir = str(tmp_path)
    write_dta(work_dir, 'DS.100.100.2.dta', [ '1000.5 2', '150.1 10', '', '151.1 11' ])
    write_dta(work_dir, 'DS.20.20.1.dta', [ '500.2 1', '120.1 5' ])

    assert concatenate_dta_files(work_dir, 'DS') == 2

    with open(os.path.join(work_dir, 'DS_dta.txt')) as infile:
        lines = infile.read().splitlines()
    assert lines == [
        '', make_dta_title_line('DS.20.20.1.dta'), '500.2 1', '120.1 5',
        '', make_dta_title_line('DS.100.100.2.dta'), '1000.5 2', '150.1 10', '151.1 11',
    ]


def test_remove_sparse_spectra(tmp_path):
    work_dir = str(tmp_path)
    cdta_file = os.path.join(work_dir, 'DS_dta.txt')
    with open(cdta_file, 'w') as outfile:
        for scan, n_ions in [ (1, 1), (2, 5), (3, 2), (4, 3) ]:
            outfile.write('\n' + make_dta_title_line(f"DS.{scan}.{scan}.2.dta") + '\n1000.5 2\n')
            for i_ion in range(n_ions):
                outfile.write(f"{100 + i_ion}.0 10\n")

    #### The first spectrum is kept even though it is sparse
    assert remove_sparse_spectra(work_dir, 'DS_dta.txt') == 1
    assert [ header.scan_number_start for header in read_headers(cdta_file) ] == [ 1, 2, 4 ]
    assert not os.path.exists(cdta_file + '.tmp')
    assert not os.path.exists(cdta_file + '.old')

    assert remove_sparse_spectra(work_dir, 'missing_dta.txt') is None


def test_validate_scan_and_cs_tags(tmp_path):
    cdta_file = str(tmp_path / 'DS_dta.txt')
    with open(cdta_file, 'w') as outfile:
        outfile.write('\n' + make_dta_title_line('DS.7.7.3.dta') + '\n1500.5 3\n150.1 10\n')
        outfile.write('\n' + make_dta_title_line('DS.8.8.2.dta') + '\n1000.5 2   scan=8 cs=2\n150.1 10\n')

    assert validate_cdta_file_scan_and_cs_tags(cdta_file, True, False) == 'OK'
    headers = read_headers(cdta_file)
    assert headers[0].parent_ion_line == '1500.5 3   scan=7 cs=3'
    assert headers[1].parent_ion_line == '1000.5 2   scan=8 cs=2'
    assert os.path.isfile(cdta_file + '.old')

    #### A second pass has nothing to update and leaves no new file behind
    output_file = str(tmp_path / 'DS_updated_dta.txt')
    assert validate_cdta_file_scan_and_cs_tags(cdta_file, False, False, output_file) == 'OK'
    assert not os.path.exists(output_file)

    assert validate_cdta_file_scan_and_cs_tags('', True, True) is None
    assert validate_cdta_file_scan_and_cs_tags(cdta_file, False, False) is None


def test_zip_and_unzip(tmp_path):
    source_file = str(tmp_path / 'DS_dta.txt')
    with open(source_file, 'w') as outfile:
        outfile.write('content\n')
    zip_filename = str(tmp_path / 'DS_dta.zip')
    assert zip_file(source_file, zip_filename) == 'OK'

    target_dir = tmp_path / 'unzipped'
    target_dir.mkdir()
    assert unzip_file(zip_filename, str(target_dir)) == [ 'DS_dta.txt' ]
    assert (target_dir / 'DS_dta.txt').read_text() == 'content\n'

    assert zip_file(str(tmp_path / 'missing.txt'), zip_filename) is None
    assert unzip_file(source_file, str(target_dir)) is None
