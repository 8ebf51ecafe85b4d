import pytest

from sharevault.events import EventLog
from sharevault.vault import VaultRegistry

AUTHORITY = "authority"
ASSET = "USDC"


@pytest.fixture
def events():
    return EventLog()


@pytest.fixture
def registry(events):
    return VaultRegistry(events=events)


@pytest.fixture
def vault(registry):
    """A 6-decimal asset vault, so the decimals offset is 3."""

    return registry.create_vault(
        authority=AUTHORITY,
        asset_identity=ASSET,
        asset_decimals=6,
        vault_id=1,
        name="Test Vault",
        symbol="tvUSDC",
    )


@pytest.fixture
def fund(vault):
    def _fund(account, amount):
        assert vault.asset_token.mint(account, amount)

    return _fund
