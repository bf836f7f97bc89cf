"""Tests for device identification."""

from unittest.mock import patch

from timekeeper.sync.device import DeviceIdentity, get_device_name


@patch("socket.gethostname")
def test_removes_local_suffix(mock_gethostname):
    mock_gethostname.return_value = "my-macbook.local"
    assert get_device_name() == "my-macbook"


@patch("socket.gethostname")
@patch("platform.node")
def test_falls_back_to_platform_node(mock_node, mock_gethostname):
    mock_gethostname.return_value = "localhost"
    mock_node.return_value = "real-hostname.local"
    assert get_device_name() == "real-hostname"


@patch("socket.gethostname")
@patch("platform.machine")
def test_error_fallback(mock_machine, mock_gethostname):
    mock_gethostname.side_effect = OSError("no network")
    mock_machine.return_value = "arm64"
    assert get_device_name().endswith("-arm64")


@patch("timekeeper.sync.device.get_device_name", return_value="studio")
def test_identity_for_this_machine(mock_name):
    identity = DeviceIdentity.for_this_machine("abc-123")
    assert identity.device_id == "abc-123"
    assert identity.device_name == "studio"
    assert identity.platform
