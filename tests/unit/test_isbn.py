# ABOUTME: Unit tests for ISBN detection and classification.
# ABOUTME: Validates hyphenated input, prefixes, and the isbn10/isbn13 split.

from librarium.metadata.isbn import classify_isbn, clean_isbn, find_isbn


class TestFindIsbn:
    def test_finds_hyphenated_isbn13(self) -> None:
        assert find_isbn("978-0-15-144647-6") == "9780151446476"

    def test_finds_prefixed_isbn10_with_check_x(self) -> None:
        assert find_isbn("ISBN: 0-8044-2957-x") == "080442957X"

    def test_urn_identifier_without_isbn(self) -> None:
        assert find_isbn("urn:uuid:1234") is None

    def test_none_input(self) -> None:
        assert find_isbn(None) is None

    def test_clean_isbn(self) -> None:
        assert clean_isbn(" 978 0 15 ") == "978015"


class TestClassifyIsbn:
    def test_isbn13(self) -> None:
        assert classify_isbn("9780151446476") == {"isbn": "9780151446476", "isbn13": "9780151446476"}

    def test_isbn10(self) -> None:
        assert classify_isbn("0151446474") == {"isbn": "0151446474", "isbn10": "0151446474"}

    def test_nothing_found(self) -> None:
        assert classify_isbn("not an isbn") == {}
