import pytest

from safe_batch.tokens import StaticTokenResolver


# EIP-55 reference vectors: valid checksummed addresses
ALICE = "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed"
BOB = "0xfB6916095ca1df60bB79Ce92cE3Ea74c37c5d359"
CAROL = "0xdbF03B407c01E7cD3CBea99509d93f8DDDC8C6FB"
TOKEN = "0xD1220A0cf47c7B9Be7A2E6BA89F429762e7b9aDb"


@pytest.fixture()
def recipients_csv() -> str:
    """Three valid recipients with a header line."""
    return (
        "address,amount\n"
        f"{ALICE},1.5\n"
        f"{BOB},0\n"
        f"{CAROL},250\n"
    )


@pytest.fixture()
def usdc_resolver() -> StaticTokenResolver:
    """Resolver that knows TOKEN as a 6-decimal stablecoin."""
    return StaticTokenResolver({TOKEN: (6, "USDC")})
