"""
Declarative descriptions of every bulk-import target.

Each target lists its canonical fields, the header aliases recognised for
each field (in priority order), the natural key used for de-duplication and
upserts, and the write chunk size. Adding a target is purely a data change:
the mapper, validator and writer are generic over these definitions.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple

FIELD_TEXT = "text"
FIELD_INTEGER = "integer"
FIELD_DECIMAL = "decimal"
FIELD_DATE = "date"
FIELD_EMAIL = "email"

NUMERIC_KINDS = frozenset({FIELD_INTEGER, FIELD_DECIMAL})

KEY_SEPARATOR = "|"


class UnknownTargetSchemaError(KeyError):
    """Raised when a submission names a target that is not registered."""


@dataclass(frozen=True)
class FieldSpec:
    name: str
    kind: str = FIELD_TEXT
    required: bool = False
    # When False, an optional value that fails coercion is dropped instead of
    # rejecting the row.
    strict: bool = True
    default: Any = None


@dataclass(frozen=True)
class TargetSchema:
    name: str
    table_name: str
    fields: Tuple[FieldSpec, ...]
    aliases: Mapping[str, Tuple[str, ...]]
    key_fields: Tuple[str, ...]
    key_column: str
    chunk_size: int
    # At least one of these must be present for a row to be valid.
    required_any: Tuple[str, ...] = ()
    # Canonical field for each column position, used when a sheet only exposes
    # placeholder headers.
    positional_fields: Tuple[Optional[str], ...] = ()
    # Submission context field copied onto every record; also limits the rows
    # removed by a replace-mode import.
    scope_field: Optional[str] = None
    _by_name: Dict[str, FieldSpec] = field(default_factory=dict, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_by_name", {spec.name: spec for spec in self.fields})

    @property
    def field_names(self) -> Tuple[str, ...]:
        return tuple(spec.name for spec in self.fields)

    @property
    def required_fields(self) -> Tuple[str, ...]:
        return tuple(spec.name for spec in self.fields if spec.required)

    @property
    def has_derived_key(self) -> bool:
        """True when the natural key is stored in its own column."""
        return self.key_column not in self._by_name

    def get_field(self, name: str) -> FieldSpec:
        return self._by_name[name]

    def natural_key(self, record: Mapping[str, Any]) -> str:
        if not self.has_derived_key:
            value = record.get(self.key_column)
            return "" if value is None else str(value)
        return KEY_SEPARATOR.join(
            "" if record.get(name) is None else str(record.get(name))
            for name in self.key_fields
        )

    @property
    def key_label(self) -> str:
        return "+".join(self.key_fields)


_SERIAL_ALIASES = ("sn", "s/n", "serial_number", "serial no", "serial", "serialno")
_ITEM_CODE_ALIASES = ("kode item", "kode_item", "item_code", "sku", "itemcode", "kodeitem")
_GROUP_ALIASES = ("kelompok", "kelompol", "group", "category_group", "kategori", "category")
_FAMILY_ALIASES = ("family", "famili", "familia", "keluarga")
_PATTERN_CODE_ALIASES = ("kode motif", "kode_motif", "motif_code", "pattern_code", "kodemotif")


PRICELIST = TargetSchema(
    name="pricelist",
    table_name="pricelist",
    fields=(
        FieldSpec("serial_number"),
        FieldSpec("item_code"),
        FieldSpec("item_group"),
        FieldSpec("family"),
        FieldSpec("material_description"),
        FieldSpec("pattern_code"),
        FieldSpec("pattern_name"),
        FieldSpec("normal_price", FIELD_DECIMAL, required=True),
        FieldSpec("special_price", FIELD_DECIMAL, strict=False),
    ),
    aliases={
        "serial_number": _SERIAL_ALIASES,
        "item_code": _ITEM_CODE_ALIASES,
        "item_group": _GROUP_ALIASES,
        "family": _FAMILY_ALIASES,
        "material_description": (
            "kode material",
            "kode_material",
            "material_code",
            "deskripsi material",
            "deskripsi_material",
            "material description",
        ),
        "pattern_code": _PATTERN_CODE_ALIASES,
        "pattern_name": ("nama motif", "nama_motif", "motif_name", "pattern_name", "nama"),
        "normal_price": ("normal price", "normal_price", "harga normal", "harga_normal", "price"),
        "special_price": ("sp", "special_price", "special price", "harga_khusus", "harga khusus"),
    },
    key_fields=("serial_number", "item_code", "item_group", "family", "material_description", "pattern_code"),
    key_column="price_key",
    chunk_size=500,
)


REFERENCE_SHEET = TargetSchema(
    name="reference-sheet",
    table_name="reference_sheet",
    fields=(
        FieldSpec("item_code", required=True),
        FieldSpec("item_name", required=True),
        FieldSpec("item_group"),
        FieldSpec("family"),
        FieldSpec("original_code"),
        FieldSpec("color"),
        FieldSpec("material_code"),
        FieldSpec("material_description"),
        FieldSpec("pattern_code"),
        FieldSpec("pattern_description"),
    ),
    aliases={
        "item_code": _ITEM_CODE_ALIASES,
        "item_name": ("nama item", "nama_item", "item name", "itemname", "namaitem"),
        "item_group": _GROUP_ALIASES,
        "family": _FAMILY_ALIASES,
        "original_code": ("original code", "original_code", "kode asli", "kodeasli"),
        "color": ("color", "colour", "colours", "warna"),
        "material_code": ("kode material", "kode_material", "material code", "materialcode"),
        "material_description": ("deskripsi material", "deskripsi_material", "material description"),
        "pattern_code": _PATTERN_CODE_ALIASES + ("motif code", "pattern code"),
        "pattern_description": (
            "deskripsi motif",
            "deskripsi_motif",
            "motif description",
            "pattern description",
        ),
    },
    key_fields=("item_code",),
    key_column="item_code",
    chunk_size=50,
)


STAFF = TargetSchema(
    name="staff",
    table_name="staff",
    fields=(
        FieldSpec("nik", required=True),
        FieldSpec("email", FIELD_EMAIL, required=True),
        FieldSpec("full_name"),
        FieldSpec("city"),
        FieldSpec("address"),
        FieldSpec("phone"),
        FieldSpec("birth_place"),
        FieldSpec("birth_date", FIELD_DATE),
        FieldSpec("join_date", FIELD_DATE),
        FieldSpec("position"),
    ),
    aliases={
        "nik": ("nik", "employee id", "employee_id"),
        "email": ("email", "e-mail", "email address"),
        "full_name": ("nama lengkap", "nama_lengkap", "full name", "fullname", "name"),
        "city": ("kota", "city"),
        "address": ("alamat", "address"),
        "phone": ("no hp", "no_hp", "nohp", "phone number", "phone"),
        "birth_place": ("tempat lahir", "tempat_lahir", "place of birth"),
        "birth_date": ("tanggal lahir", "tanggal_lahir", "date of birth", "dob"),
        "join_date": ("tanggal masuk", "tanggal_masuk", "date joined", "join date"),
        "position": ("jabatan", "position"),
    },
    key_fields=("nik",),
    key_column="nik",
    chunk_size=25,
)


STORES = TargetSchema(
    name="stores",
    table_name="stores",
    fields=(
        FieldSpec("store_code", required=True),
        FieldSpec("store_name", required=True),
        FieldSpec("store_type"),
    ),
    aliases={
        "store_code": ("kode gudang", "kode_gudang", "kodegudang", "store code", "store_code"),
        "store_name": ("nama gudang", "nama_gudang", "namagudang", "store name", "store_name"),
        "store_type": ("jenis gudang", "jenis_gudang", "jenisgudang", "store type", "store_type"),
    },
    key_fields=("store_code",),
    key_column="store_code",
    chunk_size=100,
)


DISCOUNTS = TargetSchema(
    name="discounts",
    table_name="discounts",
    fields=(
        FieldSpec("discount_id", FIELD_INTEGER, required=True),
        FieldSpec("discount_name"),
        FieldSpec("discount_type"),
        FieldSpec("discount_amount", FIELD_DECIMAL, required=True),
        FieldSpec("start_from", FIELD_DATE),
        FieldSpec("end_at", FIELD_DATE),
    ),
    aliases={
        "discount_id": ("discount id", "discount_id", "id diskon"),
        "discount_name": ("discount name", "discount_name", "nama diskon"),
        "discount_type": ("discount type", "discount_type", "jenis diskon", "tipe diskon"),
        "discount_amount": ("discount amount", "discount_amount", "discount value", "nilai diskon"),
        "start_from": ("start from", "start_from", "start date", "mulai"),
        "end_at": ("end at", "end_at", "end date", "selesai"),
    },
    key_fields=("discount_id",),
    key_column="discount_id",
    chunk_size=100,
)


OPENING_STOCK = TargetSchema(
    name="opening-stock",
    table_name="opening_stock",
    fields=(
        FieldSpec("serial_number"),
        FieldSpec("item_code", required=True),
        FieldSpec("item_group"),
        FieldSpec("family"),
        FieldSpec("material_description"),
        FieldSpec("pattern_code"),
        FieldSpec("item_name"),
        FieldSpec("qty", FIELD_INTEGER, default=1),
    ),
    aliases={
        "serial_number": _SERIAL_ALIASES,
        "item_code": _ITEM_CODE_ALIASES,
        "item_group": _GROUP_ALIASES,
        "family": _FAMILY_ALIASES,
        "material_description": ("deskripsi material", "deskripsi_material", "material description"),
        "pattern_code": _PATTERN_CODE_ALIASES,
        "item_name": ("nama item", "nama_item", "item name", "item_name"),
        "qty": ("qty", "quantity", "jumlah"),
    },
    key_fields=("serial_number", "item_code"),
    key_column="stock_key",
    chunk_size=500,
)


TRANSFER_ITEMS = TargetSchema(
    name="transfer-items",
    table_name="transfer_items",
    fields=(
        FieldSpec("to_number", required=True),
        FieldSpec("line_no", FIELD_INTEGER, strict=False),
        FieldSpec("serial_number"),
        FieldSpec("item_code"),
        FieldSpec("item_name"),
        FieldSpec("qty", FIELD_INTEGER, strict=False, default=1),
    ),
    aliases={
        "line_no": ("no. baris", "no baris", "no.baris", "line no", "line_no", "row no", "row_no"),
        "serial_number": _SERIAL_ALIASES,
        "item_code": _ITEM_CODE_ALIASES + ("code",),
        "item_name": (
            "nama item",
            "nama_item",
            "item_name",
            "nama",
            "itemname",
            "product name",
            "description",
        ),
        "qty": ("q to tran", "q_to_tran", "qty", "quantity", "jumlah"),
    },
    key_fields=("to_number", "line_no", "serial_number", "item_code"),
    key_column="item_key",
    chunk_size=1000,
    required_any=("serial_number", "item_code", "item_name"),
    positional_fields=("line_no", "item_code", "item_name", "serial_number", "qty"),
    scope_field="to_number",
)


SCHEMAS: Dict[str, TargetSchema] = {
    schema.name: schema
    for schema in (
        PRICELIST,
        REFERENCE_SHEET,
        STAFF,
        STORES,
        DISCOUNTS,
        OPENING_STOCK,
        TRANSFER_ITEMS,
    )
}


def get_target_schema(name: str) -> TargetSchema:
    try:
        return SCHEMAS[name]
    except KeyError:
        raise UnknownTargetSchemaError(
            f"Unknown target schema '{name}'. Expected one of: {', '.join(sorted(SCHEMAS))}"
        ) from None
