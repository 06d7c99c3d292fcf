"""Tests for the it8951 command line interface."""

import argparse
import struct
from unittest.mock import MagicMock, patch

import pytest
import usb.core
from PIL import Image

from conftest import FakeTransport
from it8951 import cli
from it8951.commands import InquiryData, Mode
from it8951.conf import get_selected_device
from it8951.connection import Connection
from it8951.errors import DeviceNotFound
from it8951.transport import FoundDevice


@pytest.fixture(autouse=True)
def config_home(tmp_path, monkeypatch):
    monkeypatch.setenv('XDG_CONFIG_HOME', str(tmp_path))
    return tmp_path


@pytest.fixture
def epd():
    """A connected-looking Connection mock usable as a context manager."""
    conn = MagicMock()
    conn.__enter__.return_value = conn
    conn.__exit__.return_value = False
    conn.inquiry.return_value = InquiryData("Generic", "Storage RamDisc", "1.00")
    conn.system_info.width = 1872
    conn.system_info.height = 1404
    conn.system_info.mode = Mode.GC16
    conn.system_info.version = 2
    conn.system_info.image_buffer_base = 0x0011FE50
    conn.display_image.return_value = 3
    with patch.object(cli, '_connect', return_value=conn) as connect:
        conn.connect = connect
        yield conn


class TestArgTypes:

    def test_mode_by_name(self):
        assert cli._mode('gc16') is Mode.GC16

    def test_mode_by_number(self):
        assert cli._mode('7') is Mode.A2

    def test_mode_unknown(self):
        with pytest.raises(argparse.ArgumentTypeError):
            cli._mode('sepia')

    def test_device_id(self):
        assert cli._device_id('048d:8951') == (0x048D, 0x8951)
        with pytest.raises(argparse.ArgumentTypeError):
            cli._device_id('bogus')


class TestMain:

    def test_no_command_prints_help(self, capsys):
        assert cli.main([]) == 0
        assert 'usage' in capsys.readouterr().out

    def test_info(self, epd, capsys):
        assert cli.main(['info']) == 0
        out = capsys.readouterr().out
        assert 'Storage RamDisc' in out
        assert '1872' in out
        assert 'GC16' in out
        assert '0x0011fe50' in out

    def test_info_with_device(self, epd):
        cli.main(['--device', '1b3f:30fe', 'info'])
        epd.connect.assert_called_once_with((0x1B3F, 0x30FE))

    def test_show(self, epd, tmp_path, capsys):
        path = tmp_path / 'img.png'
        Image.new('L', (4, 4)).save(path)
        assert cli.main(['show', str(path), '--x', '8', '--mode', 'A2', '--fit']) == 0
        args, kwargs = epd.display_image.call_args
        assert kwargs == {'x': 8, 'y': 0, 'mode': Mode.A2, 'fit': True}
        assert '3 band(s)' in capsys.readouterr().out

    def test_show_missing_file(self, epd, capsys):
        assert cli.main(['show', '/nonexistent/image.png']) == 1
        assert 'Error:' in capsys.readouterr().err
        epd.connect.assert_not_called()

    def test_clear(self, epd):
        assert cli.main(['clear', '-m', 'du']) == 0
        epd.clear.assert_called_once_with(Mode.DU)

    def test_clear_default_mode(self, epd):
        cli.main(['clear'])
        epd.clear.assert_called_once_with(Mode.INIT)

    def test_driver_error_returns_1(self, capsys):
        with patch.object(cli, '_connect', side_effect=DeviceNotFound("No IT8951 device found")):
            assert cli.main(['info']) == 1
        assert 'No IT8951 device found' in capsys.readouterr().err

    @patch('usb.core.find', side_effect=usb.core.NoBackendError("No backend available"))
    def test_missing_libusb_returns_1(self, mock_find, capsys):
        assert cli.main(['info']) == 1
        assert 'libusb' in capsys.readouterr().err

    @patch('usb.core.find', side_effect=usb.core.NoBackendError("No backend available"))
    def test_detect_missing_libusb_returns_1(self, mock_find, capsys):
        assert cli.main(['detect']) == 1
        assert 'Error:' in capsys.readouterr().err

    @pytest.mark.parametrize("argv", [
        ['--x', '-5'],
        ['--y', '-1'],
        ['--x', '16', '--fit'],
    ])
    def test_show_bad_origin_returns_1(self, argv, tmp_path, capsys):
        path = tmp_path / 'img.png'
        Image.new('L', (4, 4)).save(path)
        fake = FakeTransport()
        fake.queue.append(struct.pack('>28I', *([0] * 4 + [16, 8, 0, 0x1000] + [0] * 20)))
        with patch.object(cli, '_connect', return_value=Connection(fake)):
            assert cli.main(['show', str(path)] + argv) == 1
        assert 'Error:' in capsys.readouterr().err
        assert len(fake.cbws()) == 1
        assert fake.close_calls == 1

    def test_select(self, capsys):
        assert cli.main(['select', '1b3f:30fe']) == 0
        assert get_selected_device() == (0x1B3F, 0x30FE)
        assert '1b3f:30fe' in capsys.readouterr().out

    @patch('it8951.transport.find_devices')
    def test_detect(self, mock_find, capsys):
        mock_find.return_value = [FoundDevice(0x048D, 0x8951, bus=1, address=5)]
        assert cli.main(['detect']) == 0
        assert '048d:8951 (bus 1, address 5)' in capsys.readouterr().out

    @patch('it8951.transport.find_devices', return_value=[])
    def test_detect_none(self, mock_find, capsys):
        assert cli.main(['detect']) == 1
        out = capsys.readouterr().out
        assert 'No IT8951 controller found' in out
        assert '048d:8951' in out


class TestConnect:

    @patch('it8951.connection.Connection.open_usb')
    def test_device_tried_first(self, mock_open):
        cli._connect((0x1234, 0x5678))
        settings = mock_open.call_args.kwargs['settings']
        assert settings.device_ids[0] == (0x1234, 0x5678)
