"""
Tests for the command line client's argument handling.
"""
import pytest

from encmatrix.client.cli import check_shapes, main, parse_matrix
from encmatrix.common.errors import ValidationError


class TestParseMatrix:
    """Rows separated by ';', values by ','."""

    def test_square(self):
        assert parse_matrix("1,2;3,4", 16).tolist() == [[1, 2], [3, 4]]

    def test_column_vector(self):
        assert parse_matrix("5;6", 16).tolist() == [[5], [6]]

    def test_whitespace_and_trailing_separator(self):
        assert parse_matrix(" 1, -2 ;3,4;", 16).tolist() == [[1, -2], [3, 4]]

    def test_ragged(self):
        with pytest.raises(ValidationError):
            parse_matrix("1,2;3", 16)

    def test_not_a_number(self):
        with pytest.raises(ValidationError):
            parse_matrix("1,x", 16)

    def test_size_limit(self):
        with pytest.raises(ValidationError):
            parse_matrix(",".join(["1"] * 17), 16)


class TestCheckShapes:
    """Operand shapes allowed per command."""

    def test_product(self):
        check_shapes("product", parse_matrix("1,2", 16), parse_matrix("1;2", 16))
        with pytest.raises(ValidationError):
            check_shapes("product", parse_matrix("1,2", 16), parse_matrix("1,2", 16))

    def test_elementwise(self):
        check_shapes("add", parse_matrix("1,2", 16), parse_matrix("3,4", 16))
        with pytest.raises(ValidationError):
            check_shapes("subtract", parse_matrix("1,2", 16), parse_matrix("1;2", 16))

    def test_main_reports_invalid_input(self, capsys, monkeypatch):
        monkeypatch.setattr("encmatrix.client.cli.setup_service_logging", lambda name: None)
        assert main(["add", "--a", "1,2", "--b", "1;2"]) == 1
        assert "equal shapes" in capsys.readouterr().err
