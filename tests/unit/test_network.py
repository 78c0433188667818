import pytest

from setlist.errors import DispatchError
from setlist.network import host_and_port, talkback_endpoint


def test_host_and_port_parses_urls():
    assert host_and_port("http://caller:9000") == ("caller", 9000)
    assert host_and_port("grpc://10.0.0.5:50051/path") == ("10.0.0.5", 50051)


@pytest.mark.parametrize("url", ["", "caller:9000", "http://caller", "not a url", "http://h:99999"])
def test_host_and_port_rejects_invalid_urls(url):
    with pytest.raises(DispatchError, match="Invalid URL"):
        host_and_port(url)


def test_talkback_endpoint_prefers_configured_host():
    assert talkback_endpoint(50051, "orchestrator.internal") == "http://orchestrator.internal:50051"
    assert talkback_endpoint(50051).startswith("http://")
