import sys
import os
sys.path.append(os.path.dirname(os.path.realpath(__file__))+"/../lib")
from cdta_reader import CdtaTextFileReader, SpectrumHeader, make_dta_title_line
from cdta_merger import CdtaMerger, MergeResult, build_scan_range_index, scan_match_is_possible
from cdta_merger import scan_headers_match, fragment_end_scan_is_unknown, remove_title_and_parent_ion_lines


def write_cdta(filename, spectra):
    with open(filename, 'w') as outfile:
        for title, parent_ion_line, peaks in spectra:
            outfile.write('\n')
            outfile.write(make_dta_title_line(title) + '\n')
            outfile.write(parent_ion_line + '\n')
            for peak in peaks:
                outfile.write(peak + '\n')


def header(title, parent_ion_line='1000.5 2'):
    return SpectrumHeader(make_dta_title_line(title), parent_ion_line)


#### A clock that moves forward a fixed step every time it is read
class SteppingClock:
    def __init__(self, step):
        self.now = 0.0
        self.step = step

    def __call__(self):
        self.now += self.step
        return self.now


#### A reader that switches to another file the first time it is rewound
class SwappingReader(CdtaTextFileReader):
    swaps = {}

    def rewind(self):
        if self.filename in self.swaps:
            return self.open_file(self.swaps[self.filename])
        return super().rewind()


def test_remove_title_and_parent_ion_lines():
    text = '\n'.join([ '=TITLE', '+1', '121.3 500', '', '=TITLE2', '+1' ])
    assert remove_title_and_parent_ion_lines(text) == '121.3 500\n'

    text = '\n'.join([ make_dta_title_line('DS.100.100.2'), '1200.6 2', '100.1 10', '200.2 20', '' ])
    assert remove_title_and_parent_ion_lines(text) == '100.1 10\n200.2 20\n'


def test_scan_headers_match():
    assert scan_headers_match(header('DS.100.100.2'), header('DS.100.100.3'))
    assert not scan_headers_match(header('DS.100.100.2'), header('DS.100.101.2'))
    assert not scan_headers_match(header('DS.100.100.2'), header('DS.101.100.2'))

    #### An empty fragment header never matches
    assert not scan_headers_match(header('DS.0.0.0'), SpectrumHeader())


def test_fragment_end_scan_is_unknown():
    assert fragment_end_scan_is_unknown(header('DS.300.299.2'))
    assert not fragment_end_scan_is_unknown(header('DS.300.300.2'))
    assert not fragment_end_scan_is_unknown(header('DS.300.310.2'))

    #### The end scan of the fragment header is ignored when it is below its start scan
    assert scan_headers_match(header('DS.300.310.2'), header('DS.300.299.2'))
    assert scan_headers_match(header('DS.300.300.2'), header('DS.300.1.2'))

    #### Only the fragment header gets this treatment
    assert not scan_headers_match(header('DS.400.399.2'), header('DS.400.405.2'))


def test_build_scan_range_index(tmp_path):
    fragment_file = str(tmp_path / 'fragment_dta.txt')
    write_cdta(fragment_file, [
        ( 'DS.100.100.2', '1000.5 2', [ '100.0 1' ] ),
        ( 'DS.100.100.3', '1500.2 3', [ '100.0 1' ] ),
        ( 'DS.100.102.2', '1000.5 2', [ '100.0 1' ] ),
        ( 'DS.200.205.2', '1000.5 2', [ '100.0 1' ] ),
    ])

    with CdtaTextFileReader() as reader:
        assert reader.open_file(fragment_file)
        index = build_scan_range_index(reader)

    assert index == { 100: { 100, 102 }, 200: { 205 } }
    assert scan_match_is_possible(index, header('DS.100.102.2'))
    assert scan_match_is_possible(index, header('DS.200.205.3'))
    assert not scan_match_is_possible(index, header('DS.200.200.2'))
    assert not scan_match_is_possible(index, header('DS.300.300.2'))


def test_merge_two_spectra(tmp_path):
    parent_file = str(tmp_path / 'DS_DTA_Original.txt')
    fragment_file = str(tmp_path / 'DS_DTA_Centroided.txt')
    output_file = str(tmp_path / 'DS_dta.txt')

    write_cdta(parent_file, [
        ( 'DS.100.100.2', '1000.50 2', [ '150.1 10', '151.1 11', '152.1 12' ] ),
        ( 'DS.200.205.3', '2100.75 3', [ '250.1 20', '251.1 21', '252.1 22' ] ),
    ])
    write_cdta(fragment_file, [
        ( "DS.100.100.2 NativeID:'scan=100'", '1000.48 2', [ '150.0 100', '152.0 120' ] ),
        ( "DS.200.205.3 NativeID:'scan=200'", '2100.70 3', [ '250.0 200' ] ),
    ])

    merger = CdtaMerger()
    result = merger.merge_cdtas(parent_file, fragment_file, output_file)

    assert isinstance(result, MergeResult)
    assert result.status == 'OK'
    assert result.error is None
    assert result.n_parent_spectra == 2
    assert result.n_fragment_spectra == 2
    assert result.n_merged == 2
    assert result.n_skipped == 0
    assert result.n_rewinds == 0
    assert result.warnings == []

    with open(output_file) as infile:
        merged = infile.read()

    expected = ( '\n' + make_dta_title_line('DS.100.100.2') + '\n' + '1000.50 2\n' + '150.0 100\n' + '152.0 120\n'
               + '\n' + make_dta_title_line('DS.200.205.3') + '\n' + '2100.75 3\n' + '250.0 200\n' )
    assert merged == expected


def test_merge_with_unknown_fragment_end_scan(tmp_path):
    parent_file = str(tmp_path / 'parent_dta.txt')
    fragment_file = str(tmp_path / 'fragment_dta.txt')
    output_file = str(tmp_path / 'merged_dta.txt')

    write_cdta(parent_file, [
        ( 'DS.300.310.2', '1000.50 2', [ '150.1 10' ] ),
    ])
    write_cdta(fragment_file, [
        ( 'DS.300.299.2', '1000.48 2', [ '111.1 1' ] ),
        ( 'DS.300.310.2', '1000.48 2', [ '222.2 2' ] ),
    ])

    result = CdtaMerger().merge_cdtas(parent_file, fragment_file, output_file)
    assert result.status == 'OK'
    assert result.n_merged == 1

    #### The first spectrum with the same start scan is taken
    with open(output_file) as infile:
        lines = infile.read().splitlines()
    assert lines == [ '', make_dta_title_line('DS.300.310.2'), '1000.50 2', '111.1 1' ]


def test_merge_skips_spectra_without_a_possible_match(tmp_path):
    parent_file = str(tmp_path / 'parent_dta.txt')
    fragment_file = str(tmp_path / 'fragment_dta.txt')
    output_file = str(tmp_path / 'merged_dta.txt')

    write_cdta(parent_file, [
        ( 'DS.100.100.2', '1000.50 2', [ '150.1 10' ] ),
        ( 'DS.999.999.2', '1999.50 2', [ '150.1 10' ] ),
        ( 'DS.200.200.2', '2000.50 2', [ '250.1 10' ] ),
    ])
    write_cdta(fragment_file, [
        ( 'DS.100.100.2', '1000.48 2', [ '150.0 1' ] ),
        ( 'DS.200.200.2', '2000.48 2', [ '250.0 2' ] ),
    ])

    result = CdtaMerger().merge_cdtas(parent_file, fragment_file, output_file)

    assert result.status == 'OK'
    assert result.n_parent_spectra == 3
    assert result.n_merged == 2
    assert result.n_skipped == 1

    #### The fragment reader did not move for the impossible spectrum, so no rewind was needed
    assert result.n_rewinds == 0
    assert result.warnings == [
        'MergeCDTAs could not find spectrum with StartScan=999 and EndScan=999 for parent_dta.txt',
        'Skipped 1 spectra in MergeCDTAs since they were not created by MSConvert',
    ]


def test_merge_out_of_order_fragment_file(tmp_path):
    parent_file = str(tmp_path / 'parent_dta.txt')
    fragment_file = str(tmp_path / 'fragment_dta.txt')
    output_file = str(tmp_path / 'merged_dta.txt')

    write_cdta(parent_file, [
        ( 'DS.100.100.2', '1000.50 2', [ '150.1 10' ] ),
        ( 'DS.200.205.2', '2000.50 2', [ '250.1 10' ] ),
    ])
    write_cdta(fragment_file, [
        ( 'DS.200.205.2', '2000.48 2', [ '250.0 2' ] ),
        ( 'DS.100.100.2', '1000.48 2', [ '150.0 1' ] ),
    ])

    result = CdtaMerger().merge_cdtas(parent_file, fragment_file, output_file)

    assert result.status == 'OK'
    assert result.n_merged == 2
    assert result.n_skipped == 0
    assert result.n_rewinds == 1

    with open(output_file) as infile:
        lines = infile.read().splitlines()
    assert lines == [
        '', make_dta_title_line('DS.100.100.2'), '1000.50 2', '150.0 1',
        '', make_dta_title_line('DS.200.205.2'), '2000.50 2', '250.0 2',
    ]


def test_merge_rewinds_only_once_per_spectrum(tmp_path):
    parent_file = str(tmp_path / 'parent_dta.txt')
    fragment_file = str(tmp_path / 'fragment_dta.txt')
    other_file = str(tmp_path / 'other_dta.txt')
    output_file = str(tmp_path / 'merged_dta.txt')

    write_cdta(parent_file, [
        ( 'DS.100.100.2', '1000.50 2', [ '150.1 10' ] ),
    ])
    write_cdta(fragment_file, [
        ( 'DS.100.100.2', '1000.48 2', [ '150.0 1' ] ),
    ])
    write_cdta(other_file, [
        ( 'DS.200.200.2', '2000.48 2', [ '250.0 2' ] ),
    ])

    #### The index sees scan 100, but after the rewind that follows indexing only scan 200 is there
    SwappingReader.swaps = { fragment_file: other_file }
    result = CdtaMerger(reader_class=SwappingReader).merge_cdtas(parent_file, fragment_file, output_file)

    assert result.status == 'OK'
    assert result.n_merged == 0
    assert result.n_skipped == 1
    assert result.n_rewinds == 1
    assert result.warnings[-1] == 'Skipped 1 spectra in MergeCDTAs since they were not created by MSConvert'


def test_merge_empty_fragment_text_is_fatal(tmp_path):
    parent_file = str(tmp_path / 'parent_dta.txt')
    fragment_file = str(tmp_path / 'fragment_dta.txt')
    output_file = str(tmp_path / 'merged_dta.txt')

    write_cdta(parent_file, [
        ( 'DS.100.100.2', '1000.50 2', [ '150.1 10' ] ),
        ( 'DS.200.200.2', '2000.50 2', [ '250.1 10' ] ),
    ])
    write_cdta(fragment_file, [
        ( 'DS.100.100.2', '1000.48 2', [] ),
        ( 'DS.200.200.2', '2000.48 2', [ '250.0 2' ] ),
    ])

    result = CdtaMerger().merge_cdtas(parent_file, fragment_file, output_file)

    assert result.status == 'ERROR'
    assert result.code == 'EmptyFragmentText'
    assert result.error == ('remove_title_and_parent_ion_lines returned empty text for StartScan=100 and EndScan=100 '
                            'in MergeCDTAs for parent_dta.txt')
    assert result.n_merged == 0


def test_merge_missing_files(tmp_path):
    parent_file = str(tmp_path / 'parent_dta.txt')
    fragment_file = str(tmp_path / 'fragment_dta.txt')
    output_file = str(tmp_path / 'merged_dta.txt')

    result = CdtaMerger().merge_cdtas(parent_file, fragment_file, output_file)
    assert result.status == 'ERROR'
    assert result.code == 'CantOpenParentFile'
    assert parent_file in result.error

    write_cdta(parent_file, [ ( 'DS.100.100.2', '1000.50 2', [ '150.1 10' ] ) ])
    result = CdtaMerger().merge_cdtas(parent_file, fragment_file, output_file)
    assert result.status == 'ERROR'
    assert result.code == 'CantOpenFragmentFile'
    assert fragment_file in result.error
    assert not os.path.exists(output_file)


def test_merge_status_messages(tmp_path, capsys):
    parent_file = str(tmp_path / 'parent_dta.txt')
    fragment_file = str(tmp_path / 'fragment_dta.txt')
    output_file = str(tmp_path / 'merged_dta.txt')

    spectra = [ ( f"DS.{scan}.{scan}.2", '1000.50 2', [ '150.1 10' ] ) for scan in [ 1, 2, 3, 4 ] ]
    write_cdta(parent_file, spectra)
    write_cdta(fragment_file, spectra)

    #### 20 seconds pass between status checks, so every second spectrum reports at a 30 second interval
    merger = CdtaMerger(clock=SteppingClock(20), verbose=1)
    result = merger.merge_cdtas(parent_file, fragment_file, output_file)
    assert result.n_merged == 4

    captured = capsys.readouterr()
    status_lines = [ line for line in captured.err.splitlines() if 'Merging CDTAs, scan' in line ]
    assert status_lines == [ 'INFO: Merging CDTAs, scan 2', 'INFO: Merging CDTAs, scan 4' ]


def test_merge_result_to_dict(tmp_path):
    result = MergeResult('a_dta.txt', 'b_dta.txt', 'c_dta.txt')
    result.skip(header('DS.5.6.2'))
    assert result.to_dict()['n_skipped'] == 1
    assert result.to_dict()['warnings'] == [ 'MergeCDTAs could not find spectrum with StartScan=5 and EndScan=6 for a_dta.txt' ]
    result.set_error('MergeIOError', 'disk full')
    assert result.to_dict()['status'] == 'ERROR'
    assert result.to_dict()['error'] == 'disk full'


def test_remove_title_and_parent_ion_lines_with_blank_after_title():
    text = '\n'.join([ make_dta_title_line('DS.7.7.2'), '', '1400.7 2', '100.1 10', '' ])
    assert remove_title_and_parent_ion_lines(text) == '100.1 10\n'


def test_merge_fragment_with_blank_line_after_title(tmp_path):
    parent_file = str(tmp_path / 'parent_dta.txt')
    fragment_file = str(tmp_path / 'fragment_dta.txt')
    output_file = str(tmp_path / 'merged_dta.txt')

    write_cdta(parent_file, [ ( 'DS.7.7.2', '1400.70 2', [ '150.1 10' ] ) ])
    with open(fragment_file, 'w') as outfile:
        outfile.write('\n' + make_dta_title_line('DS.7.7.2') + '\n\n1400.68 2   scan=7 cs=2\n150.00000 100.00\n')

    result = CdtaMerger().merge_cdtas(parent_file, fragment_file, output_file)
    assert result.status == 'OK'
    with open(output_file) as infile:
        assert infile.read().splitlines() == [ '', make_dta_title_line('DS.7.7.2'), '1400.70 2', '150.00000 100.00' ]


def test_merge_only_unknown_end_scan_in_fragment_file_is_skipped(tmp_path):
    parent_file = str(tmp_path / 'parent_dta.txt')
    fragment_file = str(tmp_path / 'fragment_dta.txt')
    output_file = str(tmp_path / 'merged_dta.txt')

    write_cdta(parent_file, [ ( 'DS.300.310.2', '1000.50 2', [ '150.1 10' ] ) ])
    write_cdta(fragment_file, [ ( 'DS.300.299.2', '1000.48 2', [ '111.1 1' ] ) ])

    #### The scan range index only holds exact start/end pairs, so the unknown end scan cannot rescue this parent
    result = CdtaMerger().merge_cdtas(parent_file, fragment_file, output_file)
    assert result.status == 'OK'
    assert result.n_merged == 0
    assert result.n_skipped == 1
    assert result.warnings == [
        'MergeCDTAs could not find spectrum with StartScan=300 and EndScan=310 for parent_dta.txt',
        'Skipped 1 spectra in MergeCDTAs since they were not created by MSConvert',
    ]


def test_merge_undecodable_fragment_file(tmp_path):
    parent_file = str(tmp_path / 'parent_dta.txt')
    fragment_file = str(tmp_path / 'fragment_dta.txt')
    output_file = str(tmp_path / 'merged_dta.txt')

    write_cdta(parent_file, [ ( 'DS.100.100.2', '1000.50 2', [ '150.1 10' ] ) ])
    with open(fragment_file, 'wb') as outfile:
        outfile.write(b'\n=== "DS.100.100.2.dta" \xff\xfe ===\n1000.48 2\n150.0 1\n')

    result = CdtaMerger().merge_cdtas(parent_file, fragment_file, output_file)
    assert result.status == 'ERROR'
    assert result.code == 'MergeIOError'
    assert result.error.startswith('Error merging CDTA files parent_dta.txt and fragment_dta.txt: ')
    assert result.n_merged == 0
