"""
Unit tests for invoice number token generation.
"""

import re
from unittest.mock import patch

import pytest

from services.invoice_number_service import default_invoice_number, to_base36


class TestToBase36:

    @pytest.mark.parametrize("value,expected", [
        (0, "0"),
        (35, "Z"),
        (36, "10"),
        (1295, "ZZ"),
    ])
    def test_encodes(self, value, expected):
        assert to_base36(value) == expected

    def test_rejects_negative(self):
        with pytest.raises(ValueError):
            to_base36(-1)


class TestDefaultInvoiceNumber:

    def test_format(self):
        with patch("services.invoice_number_service.time.time", return_value=1_700_000_000.0):
            number = default_invoice_number("INV")

        timestamp = to_base36(1_700_000_000_000)
        assert re.fullmatch(rf"INV-{timestamp}[0-9A-Z]{{4}}", number)

    def test_custom_prefix(self):
        assert default_invoice_number("BILL").startswith("BILL-")
