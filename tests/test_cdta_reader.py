import sys
import os
sys.path.append(os.path.dirname(os.path.realpath(__file__))+"/../lib")
from cdta_reader import CdtaTextFileReader, SpectrumHeader, extract_scan_info_from_dta_header, make_dta_title_line

CDTA_TEXT = '\n'.join([
    '',
    '=================================== "QC_Shew.1234.1236.2.dta" ==================================',
    '1394.71 2   scan=1234 cs=2',
    '110.07 1529.4',
    '129.10 312.2',
    '',
    '=================================== "QC_Shew.1240.1240.3.dta" ==================================',
    '2091.55 3',
    '175.12 88.0',
    '',
    '',
])


def test_extract_scan_info_from_dta_header():
    assert extract_scan_info_from_dta_header('QC_Shew.1234.1236.2.dta') == (1234, 1236, 2)
    assert extract_scan_info_from_dta_header('QC_Shew.1234.1236.2') == (1234, 1236, 2)
    assert extract_scan_info_from_dta_header('QC.Shew.v2.0100.0100.1.dta') == (100, 100, 1)
    assert extract_scan_info_from_dta_header("QC_Shew.5.5.2 NativeID:'controllerType=0 scan=5'") == (5, 5, 2)
    assert extract_scan_info_from_dta_header('QC_Shew.5.5.') == (5, 5, 0)
    assert extract_scan_info_from_dta_header('QC_Shew.a.5.2') is None
    assert extract_scan_info_from_dta_header('QC_Shew.dta') is None
    assert extract_scan_info_from_dta_header('') is None
    assert extract_scan_info_from_dta_header(None) is None


def test_spectrum_header():
    header = SpectrumHeader(make_dta_title_line('QC_Shew.20.22.3.dta'), '1500.25 3')
    assert header.title == 'QC_Shew.20.22.3.dta'
    assert header.to_dict() == {
        'title': 'QC_Shew.20.22.3.dta',
        'scan_number_start': 20,
        'scan_number_end': 22,
        'charge': 3,
        'parent_ion_mh': 1500.25,
        'parent_ion_charge': 3,
    }
    assert not header.is_empty()

    empty_header = SpectrumHeader()
    assert empty_header.is_empty()
    assert empty_header.scan_number_start == 0
    assert empty_header.scan_number_end == 0


def test_read_spectra(tmp_path):
    filename = str(tmp_path / 'QC_Shew_dta.txt')
    with open(filename, 'w') as outfile:
        outfile.write(CDTA_TEXT)

    with CdtaTextFileReader() as reader:
        assert reader.open_file(filename)

        header = reader.read_next_spectrum()
        assert (header.scan_number_start, header.scan_number_end, header.charge) == (1234, 1236, 2)
        assert header.parent_ion_line == '1394.71 2   scan=1234 cs=2'
        assert header.parent_ion_mh == 1394.71
        assert reader.get_most_recent_peak_list() == [ (110.07, 1529.4), (129.10, 312.2) ]
        text = reader.get_most_recent_spectrum_text()
        assert text.splitlines()[1:] == [ '1394.71 2   scan=1234 cs=2', '110.07 1529.4', '129.10 312.2' ]
        assert text.endswith('\n')

        header = reader.read_next_spectrum()
        assert (header.scan_number_start, header.scan_number_end, header.charge) == (1240, 1240, 3)
        assert reader.get_most_recent_peak_list() == [ (175.12, 88.0) ]

        assert reader.read_next_spectrum() is None
        assert reader.get_most_recent_spectrum_text() == ''
        assert reader.n_spectra_read == 2

        #### Rewinding starts again from the first spectrum
        assert reader.rewind()
        assert reader.n_spectra_read == 0
        header = reader.read_next_spectrum()
        assert header.scan_number_start == 1234

    assert reader.infile is None


def test_open_missing_file(tmp_path):
    reader = CdtaTextFileReader()
    assert not reader.open_file(str(tmp_path / 'missing_dta.txt'))
    assert reader.read_next_spectrum() is None
    assert not reader.rewind()


def test_blank_line_before_parent_ion_line(tmp_path):
    filename = str(tmp_path / 'QC_Shew_dta.txt')
    with open(filename, 'w') as outfile:
        outfile.write('\n'.join([ make_dta_title_line('QC_Shew.50.50.2.dta'), '', '1200.60 2', '', '300.1 40', '' ]))

    with CdtaTextFileReader() as reader:
        assert reader.open_file(filename)
        header = reader.read_next_spectrum()
        assert header.parent_ion_line == '1200.60 2'
        assert reader.get_most_recent_spectrum_text().splitlines() == [
            make_dta_title_line('QC_Shew.50.50.2.dta'), '1200.60 2', '', '300.1 40' ]
        assert reader.get_most_recent_peak_list() == [ (300.1, 40.0) ]
