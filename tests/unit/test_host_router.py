"""
Unit tests for virtual host parsing and site addresses.
"""

from unittest.mock import Mock

import pytest

from ci_client.github import GitHubError
from ci_common.models import HostCoordinates
from ci_server.router import HostRouter, SiteAddress, split_port


@pytest.fixture
def github():
    client = Mock()
    client.get_branch_head.return_value = "c0ffee"
    return client


def test_split_port():
    assert split_port("example.com:8080") == ("example.com", "8080")
    assert split_port("example.com") == ("example.com", None)
    assert split_port("example.com:") == ("example.com:", None)


class TestHostRouter:
    """Test suite for HostRouter.parse."""

    @pytest.mark.asyncio
    async def test_parse_build_host(self, github):
        router = HostRouter(github)

        coords = await router.parse("dev.abc123.mainnet.min.example.com")

        assert coords == HostCoordinates("dev", "abc123", "mainnet", "min")
        github.get_branch_head.assert_not_called()

    @pytest.mark.asyncio
    async def test_parse_with_port_and_single_label_apex(self, github):
        router = HostRouter(github)

        coords = await router.parse("dev.abc123.testnet.dev.localhost:8080")

        assert coords == HostCoordinates("dev", "abc123", "testnet", "dev")

    @pytest.mark.asyncio
    async def test_parse_with_configured_apex(self, github):
        """Test that a multi-label apex is stripped as a whole."""
        router = HostRouter(github, apex="ci.example.com")

        coords = await router.parse("dev.abc123.mainnet.normal.ci.example.com:443")

        assert coords == HostCoordinates("dev", "abc123", "mainnet", "normal")

    @pytest.mark.asyncio
    async def test_parse_latest(self, github):
        router = HostRouter(github)

        coords = await router.parse("master.latest.mainnet.dev.localhost")

        assert coords == HostCoordinates("master", "c0ffee", "mainnet", "dev")
        github.get_branch_head.assert_called_once_with("master")

    @pytest.mark.asyncio
    async def test_parse_latest_unknown_branch(self, github):
        github.get_branch_head.return_value = None
        router = HostRouter(github)

        assert await router.parse("gone.latest.mainnet.dev.localhost") is None

    @pytest.mark.asyncio
    async def test_parse_latest_api_failure(self, github):
        github.get_branch_head.side_effect = GitHubError("rate limited")
        router = HostRouter(github)

        assert await router.parse("dev.latest.mainnet.dev.localhost") is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "host",
        [
            "",
            "localhost",
            "localhost:8080",
            "example.com",
            "a.b.c.localhost",
            "dev..mainnet.dev.localhost",
            "dev.abc/x.mainnet.dev.localhost",
        ],
    )
    async def test_not_a_build_host(self, github, host):
        router = HostRouter(github)

        assert await router.parse(host) is None

    @pytest.mark.asyncio
    async def test_extra_labels_are_ignored(self, github):
        router = HostRouter(github)

        coords = await router.parse("dev.abc.mainnet.dev.extra.example.com")

        assert coords == HostCoordinates("dev", "abc", "mainnet", "dev")


class TestSiteAddress:
    """Test suite for SiteAddress."""

    def test_learns_apex_from_first_host(self):
        address = SiteAddress(port=8080)

        address.learn("dev.abc.mainnet.dev.localhost:8080")
        address.learn("other.host")

        assert address.apex == "localhost"

    def test_configured_apex_is_kept(self):
        address = SiteAddress(port=443, apex="ci.example.com", scheme="https")

        address.learn("localhost")

        assert address.apex == "ci.example.com"
        assert (
            address.build_url("dev", "abc", "mainnet", "min")
            == "https://dev.abc.mainnet.min.ci.example.com:443"
        )

    def test_build_url_defaults_to_localhost(self):
        address = SiteAddress(port=8080)

        assert (
            address.build_url("dev", "latest", "testnet", "dev")
            == "http://dev.latest.testnet.dev.localhost:8080"
        )

    def test_default_url_keeps_request_port(self):
        address = SiteAddress(port=8080)

        assert address.default_url("dev.abc.mainnet.dev.localhost:8080") == "http://localhost:8080"
        assert address.default_url("dev.abc.mainnet.dev.localhost") == "http://localhost"
