"""
Formosa CRM - Normalización de teléfonos argentinos
Run: cd backend && pytest tests/test_phone_normalization.py -v
"""

from config import normalize_phone_ar


class TestNormalizePhoneAr:

    def test_already_e164(self):
        """+5493704123456 - se respeta el formato E.164."""
        assert normalize_phone_ar("+5493704123456") == "+5493704123456"

    def test_e164_with_spaces(self):
        """+54 9 370 412-3456 - se quitan espacios y guiones."""
        assert normalize_phone_ar("+54 9 370 412-3456") == "+5493704123456"

    def test_ten_digits_gets_mobile_prefix(self):
        """3704123456 - 10 dígitos sin prefijo -> +549."""
        assert normalize_phone_ar("3704123456") == "+5493704123456"

    def test_leading_zero_removed(self):
        """03704123456 - 0 de larga distancia."""
        assert normalize_phone_ar("03704123456") == "+5493704123456"

    def test_mobile_15_removed(self):
        """0370 15 4123456 - se quita el 0 y el 15."""
        assert normalize_phone_ar("0370 15 4123456") == "+5493704123456"

    def test_country_code_without_plus(self):
        """5493704123456 - 54 inicial con 13 dígitos."""
        assert normalize_phone_ar("5493704123456") == "+5493704123456"

    def test_double_zero_prefix(self):
        """005493704123456 - 00 internacional."""
        assert normalize_phone_ar("005493704123456") == "+5493704123456"

    def test_parentheses_and_dots(self):
        """(370) 412.3456"""
        assert normalize_phone_ar("(370) 412.3456") == "+5493704123456"

    def test_empty(self):
        assert normalize_phone_ar("") == ""
        assert normalize_phone_ar(None) == ""
        assert normalize_phone_ar("sin numero") == ""

    def test_short_number_left_as_digits(self):
        """Números que no se pueden completar quedan solo con dígitos."""
        assert normalize_phone_ar("412-3456") == "4123456"
