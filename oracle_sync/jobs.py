# -*- coding: utf-8 -*-
from collections import namedtuple
from dataclasses import dataclass
from typing import Tuple

from oracle_sync.errors import ConfigurationError

Column = namedtuple("Column", ["source", "target", "cast"], defaults=(None,))

TIMESTAMP = "timestamp(0)"
BIGINT = "BIGINT"


@dataclass(frozen=True)
class Pipeline:
    """A source view and the fixed projection that feeds one Oracle table.

    Args:
        name (str): pipeline name used on the command line and in log file names.
        schema (str): schema of the source view.
        view (str): the source view.
        columns (tuple): ordered `Column` entries, aliased to destination names.
        row_filter (str): predicate selecting the active rows.
        table_env (str): environment variable overriding the destination table.
        default_table (str): destination table when `table_env` is not set.
    """

    name: str
    schema: str
    view: str
    columns: Tuple[Column, ...]
    row_filter: str
    table_env: str
    default_table: str
    geometry_column: str = "GEOMETRY"
    geometry_type: str = "POINT"
    srid: int = 2320
    dimensions: int = 2

    @property
    def source(self) -> str:
        return f"{self.schema}.{self.view}"

    def _projection(self, column: Column) -> str:
        expression = column.source
        if column.cast:
            expression = f"CAST({column.source} AS {column.cast})"
        return f'{expression} AS "{column.target}"'

    def select_sql(self) -> str:
        """str: the row-selection query handed to ogr2ogr in both transfer modes."""
        projection = ",\n    ".join(self._projection(c) for c in self.columns)
        query = f"SELECT\n    {projection}\nFROM {self.source}"
        if self.row_filter:
            query += f"\nWHERE {self.row_filter}"
        return query

    def count_sql(self) -> str:
        query = f"SELECT COUNT(*) FROM {self.source}"
        if self.row_filter:
            query += f" WHERE {self.row_filter}"
        return query


@dataclass(frozen=True)
class SyncJob:
    """The resolved unit of work for one run: pipeline, destination table, mode."""

    pipeline: Pipeline
    table: str
    mode: str = "truncate"

    @property
    def query(self) -> str:
        return self.pipeline.select_sql()


ABONE_ADRES_BILGILERI = Pipeline(
    name="abone_adres_bilgileri",
    schema="abys",
    view="abone_adres_bilgileri_vw",
    columns=(
        Column("abone_no", "ABONE_NO"),
        Column("sozlesme_no", "SOZLESME_NO"),
        Column("abone_olus_tarihi", "ABONE_OLUS_TARIHI", TIMESTAMP),
        Column("sozlesme_tarihi", "SOZLESME_TARIHI", TIMESTAMP),
        Column("abone_adi", "ABONE_ADI"),
        Column("dma_adi", "DMA_ADI"),
        Column("abone_tip_kod", "ABONE_TIP_KOD"),
        Column("abone_tip_ad", "ABONE_TIP_AD"),
        Column("tarife_turu", "TARIFE_TURU"),
        Column("sayac_durumu", "SAYAC_DURUMU"),
        Column("sayac_no", "SAYAC_NO"),
        Column("son_endeks", "SON_ENDEKS"),
        Column("ada", "ADA"),
        Column("pafta", "PAFTA"),
        Column("parsel", "PARSEL"),
        Column("bina_maks_kod", "BINA_MAKS_KOD"),
        Column("daire_maks_kod", "DAIRE_MAKS_KOD", BIGINT),
        Column("adres", "ADRES"),
        Column("ilce", "ILCE"),
        Column("mahalle", "MAHALLE"),
        Column("cadde_sokak", "CADDE_SOKAK"),
        Column("binano", "BINA_NO"),
        Column("daire_no", "DAIRE_NO"),
        Column("sehir", "SEHIR"),
        Column("building_door_location", "GEOMETRY"),
        Column("kirsal_mi", "KIRSAL_MI"),
        Column("fesih_tarihi", "FESIH_TARIHI", TIMESTAMP),
        Column("abone_iptal_tarihi", "ABONE_IPTAL_TARIHI", TIMESTAMP),
        Column("defter_no", "DEFTER_NO"),
    ),
    row_filter="durum <> '2'",
    table_env="ABONE_ADRES_BILGILERI_TABLE",
    default_table="ABONE_ADRES_BILGILERI",
)

PIPELINES = {p.name: p for p in (ABONE_ADRES_BILGILERI,)}

DEFAULT_PIPELINE = ABONE_ADRES_BILGILERI.name


def get_pipeline(name: str) -> Pipeline:
    """Look up a registered pipeline.

    Raises:
        ConfigurationError: raised when no pipeline has that name.
    """
    try:
        return PIPELINES[name]
    except KeyError:
        known = ", ".join(sorted(PIPELINES))
        raise ConfigurationError(f"Unknown pipeline {name!r}. Known pipelines: {known}.")
