# tests/test_view_model.py
import pytest
from PIL import Image

from astrocat.catalog import Catalog
from astrocat.filtering import SortFilterProxy
from astrocat.models import AstroFile, FileType
from astrocat.view_model import FileViewModel, Role, dec_converter, ra_converter


def _astrofile(id, name, created, **tags):
    return AstroFile(
        id=id, full_path=f"/data/{name}.fits", file_name=name, directory_path="/data",
        file_extension="fits", file_type=FileType.FITS, created_time=created, tags=tags,
    )


@pytest.fixture
def catalog():
    catalog = Catalog(["/data"], coalesce_interval=0)
    catalog.add_astrofiles([
        _astrofile(1, "m81", 20.0, OBJECT="M81", OBJCTRA="09 55 33", DEC="69.0625"),
        _astrofile(2, "m42", 10.0, OBJECT="M42", RA="83.8125", DEC="-5.25"),
    ])
    return catalog


def test_roles(catalog):
    model = FileViewModel(catalog, SortFilterProxy(catalog))

    assert model.row_count() == 2
    # Sorted by created time through the proxy.
    assert model.data(0, Role.ID) == 2
    assert model.data(0) == "m42"
    assert model.data(0, Role.OBJECT) == "M42"
    assert model.data(0, Role.RA) == "05:35:15.0"
    assert model.data(0, Role.DEC) == "-05:15:00.0"
    # Sexagesimal header text is shown as written.
    assert model.data(1, Role.RA) == "09 55 33"
    assert model.data(1, Role.DEC) == "+69:03:45.0"
    assert model.data(1, Role.FILE_TYPE) == "Fits"
    assert model.data(1, Role.FILE_EXTENSION) == "fits"
    assert model.data(1, Role.FILTER) == ""
    assert model.data(1, Role.ITEM).id == 1
    assert model.data(5, Role.ID) is None


def test_dec_converter():
    assert dec_converter("33.015625") == "+33:00:56.2"
    assert dec_converter("-5.25") == "-05:15:00.0"
    assert dec_converter("+69 03 55") == ""
    assert dec_converter("") == ""


def test_cell_size(catalog):
    model = FileViewModel(catalog)
    changes = []
    model.layout_changed.connect(lambda: changes.append(True))

    model.set_cell_size(50)
    assert model.data(0, Role.SIZE_HINT) == (200, 200)
    assert changes == [True]


def test_decoration_falls_back_to_tiny_thumbnail(catalog):
    tiny = Image.new("L", (20, 20), 9)
    catalog.get_astrofile_by_id(1).tiny_thumbnail = tiny
    model = FileViewModel(catalog)
    model.set_cell_size(10)

    image = model.data(model.row_of(1), Role.DECORATION)
    assert image.size == (36, 36)
    assert model.data(model.row_of(2), Role.DECORATION) is None


def test_catalog_events_reach_the_view(catalog):
    model = FileViewModel(catalog, SortFilterProxy(catalog))
    added, changed, removed = [], [], []
    model.rows_added.connect(added.append)
    model.data_changed.connect(lambda row, roles: changed.append(row))
    model.row_removed.connect(removed.append)

    catalog.add_astrofile(_astrofile(3, "m31", 5.0, OBJECT="M31"))
    assert added == [1]
    assert model.data(0, Role.OBJECT) == "M31"

    catalog.add_astrofile(_astrofile(1, "m81", 20.0, OBJECT="M81 (Bode)"))
    assert changed == [2]
    assert model.data(2, Role.OBJECT) == "M81 (Bode)"

    model.remove_rows([0])
    assert removed == [0]
    assert model.row_count() == 2
    assert catalog.get_astrofile_by_id(3) is None


def test_ra_converter():
    assert ra_converter("150.0") == "10:00:00.0"
    assert ra_converter("83.8125") == "05:35:15.0"
    assert ra_converter("0") == "00:00:00.0"
    assert ra_converter("09 55 33") == ""
