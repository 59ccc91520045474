"""
chainbasis/tests/test_bitcoin_address.py

Output-script derivation used to validate Bitcoin addresses.
"""

import pytest

from chainbasis.utils.bitcoin_address import address_to_output_script

GENESIS_P2PKH = "1A1zP1eP5QGefi2DMPTfTL5SLmv7DivfNa"
P2SH = "3J98t1WpEZ73CNmQviecrnyiWrnqRhWNLy"
P2WPKH = "bc1qw508d6qejxtdg4y5r3zarvary0c5xw7kv8f3t4"
TESTNET_P2WPKH = "tb1qw508d6qejxtdg4y5r3zarvary0c5xw7kxpjzsx"
P2TR = "bc1p0xlxvlhemja6c4dqv22uapctqupfhlxm9h8z3k2e72q4k9hcz7vqzk5jj0"
P2TR_BIP86 = "bc1p5d7rjq7g6rdk2yhzks9smlaqtedr4dekq08ge8ztwac72sfr9rusxg3297"


class TestOutputScripts:

    def test_p2pkh(self):
        script = address_to_output_script(GENESIS_P2PKH)
        assert script.hex() == "76a91462e907b15cbf27d5425399ebf6f0fb50ebb88f1888ac"

    def test_p2sh(self):
        script = address_to_output_script(P2SH)
        assert script[:2] == bytes([0xA9, 20])
        assert script[-1] == 0x87
        assert len(script) == 23

    def test_p2wpkh(self):
        script = address_to_output_script(P2WPKH)
        assert script.hex() == "0014751e76e8199196d454941c45d1b3a323f1433bd6"

    def test_uppercase_bech32_is_accepted(self):
        assert address_to_output_script(P2WPKH.upper()) == address_to_output_script(P2WPKH)

    def test_testnet_bech32(self):
        script = address_to_output_script(TESTNET_P2WPKH, "testnet")
        assert script.hex() == "0014751e76e8199196d454941c45d1b3a323f1433bd6"

    def test_taproot(self):
        script = address_to_output_script(P2TR)
        assert script.hex() == "512079be667ef9dcbbac55a06295ce870b07029bfcdb2dce28d959f2815b16f81798"

    def test_taproot_wallet_address(self):
        script = address_to_output_script(P2TR_BIP86)
        assert script[:2] == bytes([0x51, 32])
        assert len(script) == 34


class TestRejections:

    @pytest.mark.parametrize("address", [
        "",
        "not-an-address",
        "1A1zP1eP5QGefi2DMPTfTL5SLmv7DivfNb",   # checksum broken
        "bc1qw508d6qejxtdg4y5r3zarvary0c5xw7kv8f3t5",  # bech32 checksum broken
        "bc1qW508d6qejxtdg4y5r3zarvary0c5xw7kv8f3t4",  # mixed case
        " " + GENESIS_P2PKH,
        "0x742d35Cc6634C0532925a3b844Bc454e4438f44e",
        # v1 program with a plain bech32 checksum
        "bc1p0xlxvlhemja6c4dqv22uapctqupfhlxm9h8z3k2e72q4k9hcz7vqh2y7hd",
        # v0 program with a bech32m checksum
        "bc1qw508d6qejxtdg4y5r3zarvary0c5xw7kemeawh",
    ])
    def test_invalid_addresses(self, address):
        with pytest.raises(ValueError):
            address_to_output_script(address)

    def test_mainnet_address_on_testnet(self):
        with pytest.raises(ValueError):
            address_to_output_script(GENESIS_P2PKH, "testnet")

    def test_testnet_address_on_mainnet(self):
        with pytest.raises(ValueError):
            address_to_output_script(TESTNET_P2WPKH, "mainnet")
