"""
Canonical report encoding tests.

Layouts are fixed 32-byte words; the same report always encodes to
byte-identical payloads.
"""

import unittest

from securemint.encoding import (
    INSTRUCTION_BRIDGE_TRANSFER,
    INSTRUCTION_CREATE_BASKET,
    INSTRUCTION_MINT,
    WORD,
    BridgeTransferReport,
    CreateBasketReport,
    EncodingError,
    MintReport,
    bank_reference_bytes32,
    decode_report,
    encode_report,
    encode_uint,
    payload_layout,
)

from tests.support import BASKET_ADMIN, BENEFICIARY, BRIDGE_CONSUMER, DESTINATION_BENEFICIARY, DESTINATION_SELECTOR

UNITS = 10 ** 18


def word(payload: bytes, index: int) -> bytes:
    return payload[index * WORD:(index + 1) * WORD]


class TestMintEncoding(unittest.TestCase):

    def setUp(self):
        self.report = MintReport(recipient=BENEFICIARY, amount=50000 * UNITS, bank_reference="SWIFT-MT103-0001")

    def test_layout(self):
        payload = self.report.encode()

        self.assertEqual(len(payload), 4 * WORD)
        self.assertEqual(int.from_bytes(word(payload, 0), "big"), INSTRUCTION_MINT)
        self.assertEqual(word(payload, 1), b"\x00" * 12 + bytes.fromhex("aa" * 20))
        self.assertEqual(int.from_bytes(word(payload, 2), "big"), 50000 * UNITS)
        self.assertEqual(word(payload, 3), b"SWIFT-MT103-0001".ljust(32, b"\x00"))

    def test_encoding_is_deterministic(self):
        twin = MintReport(recipient=BENEFICIARY.upper().replace("0X", "0x"), amount=50000 * UNITS,
                          bank_reference="SWIFT-MT103-0001")

        self.assertEqual(self.report.encode(), self.report.encode())
        self.assertEqual(encode_report(self.report), twin.encode())

    def test_decodes_back(self):
        self.assertEqual(decode_report(self.report.encode()), self.report)


class TestBankReference(unittest.TestCase):

    def test_short_reference_is_zero_padded(self):
        self.assertEqual(bank_reference_bytes32("REF"), b"REF" + b"\x00" * 29)

    def test_long_reference_is_truncated(self):
        reference = "X" * 40
        self.assertEqual(bank_reference_bytes32(reference), b"X" * 32)

    def test_utf8_bytes_counted_not_characters(self):
        encoded = bank_reference_bytes32("é" * 20)
        self.assertEqual(len(encoded), 32)
        self.assertEqual(encoded, ("é" * 16).encode("utf-8"))


class TestBridgeEncoding(unittest.TestCase):

    def test_layout(self):
        report = BridgeTransferReport(
            destination_chain_selector=DESTINATION_SELECTOR,
            sender=BRIDGE_CONSUMER,
            beneficiary=DESTINATION_BENEFICIARY,
            amount=1000 * UNITS,
            bank_reference="SWIFT-MT103-0001",
        )

        payload = report.encode()

        self.assertEqual(len(payload), 6 * WORD)
        self.assertEqual(int.from_bytes(word(payload, 0), "big"), INSTRUCTION_BRIDGE_TRANSFER)
        self.assertEqual(int.from_bytes(word(payload, 1), "big"), DESTINATION_SELECTOR)
        self.assertEqual(word(payload, 2)[12:].hex(), BRIDGE_CONSUMER[2:])
        self.assertEqual(word(payload, 3)[12:].hex(), DESTINATION_BENEFICIARY[2:])
        self.assertEqual(decode_report(payload), report)

    def test_selector_must_fit_uint64(self):
        report = BridgeTransferReport(2 ** 64, BRIDGE_CONSUMER, DESTINATION_BENEFICIARY, 1, "REF")
        with self.assertRaises(EncodingError):
            report.encode()


class TestCreateBasketEncoding(unittest.TestCase):

    def test_layout_with_dynamic_strings(self):
        report = CreateBasketReport(name="Treasury Basket", symbol="TBSK", admin=BASKET_ADMIN)

        payload = report.encode()

        self.assertEqual(int.from_bytes(word(payload, 0), "big"), INSTRUCTION_CREATE_BASKET)
        self.assertEqual(word(payload, 1)[12:].hex(), BASKET_ADMIN[2:])
        name_offset = int.from_bytes(word(payload, 2), "big")
        symbol_offset = int.from_bytes(word(payload, 3), "big")
        self.assertEqual(name_offset, 4 * WORD)
        # name tail: length word + one padded data word
        self.assertEqual(symbol_offset, name_offset + 2 * WORD)
        self.assertEqual(int.from_bytes(payload[name_offset:name_offset + WORD], "big"), len("Treasury Basket"))
        self.assertEqual(len(payload), 8 * WORD)
        self.assertEqual(decode_report(payload), report)

    def test_long_name_spans_words(self):
        report = CreateBasketReport(name="N" * 70, symbol="S", admin=BASKET_ADMIN)
        payload = report.encode()

        self.assertEqual(int.from_bytes(word(payload, 3), "big"), 4 * WORD + 4 * WORD)
        self.assertEqual(decode_report(payload).name, "N" * 70)


class TestDecodingErrors(unittest.TestCase):

    def test_unknown_tag(self):
        payload = encode_uint(9, 8) + b"\x00" * 96
        with self.assertRaises(EncodingError):
            decode_report(payload)

    def test_truncated_mint(self):
        payload = MintReport(BENEFICIARY, 1, "REF").encode()[:-WORD]
        with self.assertRaises(EncodingError):
            decode_report(payload)

    def test_ragged_length(self):
        with self.assertRaises(EncodingError):
            decode_report(b"\x01" * 33)

    def test_dirty_address_padding(self):
        payload = bytearray(MintReport(BENEFICIARY, 1, "REF").encode())
        payload[WORD] = 0xFF
        with self.assertRaises(EncodingError):
            decode_report(bytes(payload))


class TestPrimitives(unittest.TestCase):

    def test_uint_bounds(self):
        self.assertEqual(encode_uint(2 ** 256 - 1), b"\xff" * 32)
        with self.assertRaises(EncodingError):
            encode_uint(2 ** 256)
        with self.assertRaises(EncodingError):
            encode_uint(-1)
        with self.assertRaises(EncodingError):
            encode_uint(True)

    def test_bad_address(self):
        with self.assertRaises(EncodingError):
            MintReport("0x1234", 1, "REF").encode()

    def test_payload_layout(self):
        layout = payload_layout(MintReport(BENEFICIARY, 1, "REF").encode())
        self.assertEqual([offset for offset, _ in layout], [0, 32, 64, 96])


if __name__ == "__main__":
    unittest.main()
