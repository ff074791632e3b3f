import pytest

from atmosense.data_models import AbsorptionLine
from atmosense.errors import InvalidInput
from atmosense.spectral_database import AbsorptionDatabase

CSV_TEXT = """molecule,center_wavelength,line_strength,line_width
O2,760.0,2.5,2.0
CO2,1572.0,8.0,1.5
CO2,1602.0,6.0,1.5
"""


def test_load_csv(tmp_path):
    path = tmp_path / "lines.csv"
    path.write_text(CSV_TEXT)

    db = AbsorptionDatabase.load_csv(path)

    assert len(db) == 3
    assert db.molecules == ["O2", "CO2"]
    assert [l.center_wavelength for l in db.lines_for("CO2")] == [1572.0, 1602.0]
    assert db.lines_for("CH4") == ()
    assert db.lines[0] == AbsorptionLine("O2", 760.0, 2.5, 2.0)


def test_load_csv_missing_column(tmp_path):
    path = tmp_path / "lines.csv"
    path.write_text("molecule,center_wavelength,line_strength\nO2,760.0,2.5\n")

    with pytest.raises(InvalidInput):
        AbsorptionDatabase.load_csv(path)


def test_from_records_rejects_bad_values():
    with pytest.raises(InvalidInput):
        AbsorptionDatabase.from_records([{"molecule": "O2", "center_wavelength": "x",
                                          "line_strength": 1, "line_width": 1}])
    with pytest.raises(InvalidInput):
        AbsorptionDatabase.from_records([{"molecule": "O2", "center_wavelength": 760,
                                          "line_strength": 0, "line_width": 1}])
    with pytest.raises(InvalidInput):
        AbsorptionDatabase.from_lines(AbsorptionLine("O2", 760.0, 1.0, -2.0))


def test_with_lines_returns_new_snapshot():
    db = AbsorptionDatabase.from_lines(AbsorptionLine("O2", 760.0, 2.5, 2.0))
    extended = db.with_lines(AbsorptionLine("H2O", 940.0, 0.8, 3.0))

    assert len(db) == 1
    assert len(extended) == 2
    assert extended.molecules == ["O2", "H2O"]
    assert not AbsorptionDatabase()
