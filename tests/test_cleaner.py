"""Tests for the Silver cleaning steps."""

from datetime import datetime
from decimal import Decimal

import pytest

from conftest import line, sorted_rows
from retail_rfm.cleaner import (
    aggregate_quantities,
    backfill_descriptions,
    canonicalize_descriptions,
    clean_transactions,
    find_duplicate_keys,
    merge_repeated_lines,
    split_exact_duplicates,
    split_missing_required,
    split_non_products,
    validate_unique_keys,
)
from retail_rfm.config import EXCLUDED_STOCK_CODES
from retail_rfm.exceptions import DuplicateKeyError

T0 = datetime(2010, 12, 1, 8, 26)
T1 = datetime(2010, 12, 1, 8, 27)


class TestExactDuplicates:

    def test_identical_rows_collapse(self, make_typed):
        df = make_typed([line(), line(), line(stock="71053")])

        df_dedup, df_removed = split_exact_duplicates(df)

        assert df_dedup.count() == 2
        assert df_removed.count() == 1

    def test_rows_with_null_fields_are_compared(self, make_typed):
        df = make_typed([line(customer=None), line(customer=None)])

        df_dedup, df_removed = split_exact_duplicates(df)

        assert df_dedup.count() == 1
        assert df_removed.count() == 1


class TestDescriptionBackfill:

    def test_missing_description_gets_most_frequent(self, make_typed):
        df = make_typed([
            line(invoice="1", description="HEART HOLDER"),
            line(invoice="2", description="HEART HOLDER"),
            line(invoice="3", description="HEART HOLDER WHITE"),
            line(invoice="4", description=None),
        ])

        filled = {r["InvoiceNo"]: r["Description"] for r in backfill_descriptions(df).collect()}

        assert filled["4"] == "HEART HOLDER"
        assert filled["3"] == "HEART HOLDER WHITE"

    def test_tie_goes_to_alphabetically_first(self, make_typed):
        df = make_typed([
            line(invoice="1", description="ZEBRA MUG"),
            line(invoice="2", description="APPLE MUG"),
            line(invoice="3", description=None),
        ])

        filled = {r["InvoiceNo"]: r["Description"] for r in backfill_descriptions(df).collect()}

        assert filled["3"] == "APPLE MUG"

    def test_no_known_description_stays_null(self, make_typed):
        df = make_typed([line(stock="22139", description=None)])

        row = backfill_descriptions(df).first()

        assert row["Description"] is None


class TestRequiredFields:

    @pytest.mark.parametrize("missing", ["invoice", "customer", "description"])
    def test_row_missing_required_field_is_dropped(self, make_typed, missing):
        # Own StockCode, so a missing description has nothing to be backfilled from
        incomplete = {"invoice": "2", "stock": "22139"}
        incomplete[missing] = None
        df = make_typed([line(invoice="1"), line(**incomplete)])

        valid, rejected = split_missing_required(df)

        assert [r["InvoiceNo"] for r in valid.collect()] == ["1"]
        assert [r["InvoiceNo"] for r in rejected.collect()] == ["2"]

    def test_clean_reports_rejected_rows(self, make_typed):
        df = make_typed([line(invoice="1"), line(invoice="2", customer=None)])

        result = clean_transactions(df)

        assert result.clean.count() == 1
        assert result.rejected.count() == 1
        assert result.rejected.first()["InvoiceNo"] == "2"


class TestNonProducts:

    @pytest.mark.parametrize("code", EXCLUDED_STOCK_CODES)
    def test_excluded_codes_are_removed(self, make_typed, code):
        df = make_typed([line(stock="85123A"), line(stock=code, description="POSTAGE")])

        products, excluded, missing_code = split_non_products(df)

        assert [r["StockCode"] for r in products.collect()] == ["85123A"]
        assert [r["StockCode"] for r in excluded.collect()] == [code]
        assert missing_code.count() == 0

    @pytest.mark.parametrize("code", ["m", "post", "Bank Charges"])
    def test_codes_match_case_insensitively(self, make_typed, code):
        df = make_typed([line(invoice="1"), line(invoice="2", stock=code, description="Manual")])

        result = clean_transactions(df)

        assert {r["StockCode"] for r in result.clean.collect()} == {"85123A"}
        assert [r["StockCode"] for r in result.excluded.collect()] == [code]

    def test_missing_stock_code_is_kept_apart_from_non_products(self, make_typed):
        df = make_typed([
            line(invoice="1"),
            line(invoice="2", stock="M", description="Manual"),
            line(invoice="3", stock=None, description="UNKNOWN ITEM"),
        ])

        result = clean_transactions(df)

        assert result.clean.count() == 1
        assert [r["InvoiceNo"] for r in result.excluded.collect()] == ["2"]
        assert [r["InvoiceNo"] for r in result.missing_stock_code.collect()] == ["3"]

    def test_post_never_reaches_clean_output(self, make_typed):
        df = make_typed([
            line(invoice="1", stock="POST", description="POSTAGE", quantity=3, unit_price="18.00"),
            line(invoice="1", stock="POST", description="POSTAGE", quantity=3, unit_price="18.00"),
            line(invoice="2", stock="POST", description=None),
            line(invoice="2"),
        ])

        result = clean_transactions(df)

        codes = {r["StockCode"] for r in result.clean.collect()}
        assert "POST" not in codes
        assert result.excluded.count() == 2


class TestCanonicalDescription:

    def test_one_description_per_stock_code(self, make_typed):
        df = make_typed([
            line(invoice="1", description="WHITE HANGING HEART T-LIGHT HOLDER"),
            line(invoice="2", description="WHITE  HANGING HEART  T-LIGHT HOLDER "),
            line(invoice="3", description="WHITE HANGING HEART T-LIGHT HOLDER"),
            line(invoice="4", description="CREAM HANGING HEART T-LIGHT HOLDER"),
        ])

        descriptions = {r["Description"] for r in canonicalize_descriptions(df).collect()}

        assert descriptions == {"WHITE HANGING HEART T-LIGHT HOLDER"}

    def test_comma_spacing_normalised(self, make_typed):
        df = make_typed([
            line(invoice="1", stock="22960", description="JAM MAKING SET ,WITH JARS"),
            line(invoice="2", stock="22960", description="JAM MAKING SET,WITH JARS"),
            line(invoice="3", stock="22961", description="JAM MAKING SET , PRINTED"),
        ])

        by_code = {r["StockCode"]: r["Description"] for r in canonicalize_descriptions(df).collect()}

        assert by_code == {
            "22960": "JAM MAKING SET, WITH JARS",
            "22961": "JAM MAKING SET, PRINTED",
        }

    def test_variants_counted_after_normalisation(self, make_typed):
        # Two spellings of the same text outnumber the single other description
        df = make_typed([
            line(invoice="1", description="RED  MUG"),
            line(invoice="2", description="RED MUG"),
            line(invoice="3", description="BLUE MUG"),
        ])

        descriptions = {r["Description"] for r in canonicalize_descriptions(df).collect()}

        assert descriptions == {"RED MUG"}


class TestQuantityAggregation:

    def test_identical_lines_sum_quantity(self, make_typed):
        df = make_typed([line(quantity=6), line(quantity=4)])

        rows = aggregate_quantities(df).collect()

        assert len(rows) == 1
        assert rows[0]["Quantity"] == 10

    def test_repeated_lines_keep_earliest_timestamp(self, make_typed):
        df = make_typed([line(quantity=2, invoice_date=T1), line(quantity=3, invoice_date=T0)])

        rows = merge_repeated_lines(df).collect()

        assert len(rows) == 1
        assert rows[0]["Quantity"] == 5
        assert rows[0]["InvoiceDate"] == T0

    def test_different_unit_price_not_merged(self, make_typed):
        df = make_typed([line(unit_price="2.55"), line(unit_price="2.10")])

        result = clean_transactions(df)

        prices = sorted(r["UnitPrice"] for r in result.clean.collect())
        assert prices == [Decimal("2.10"), Decimal("2.55")]

    def test_same_description_different_stock_codes_not_merged(self, make_typed):
        df = make_typed([
            line(stock="84879", description="ASSORTED COLOUR BIRD ORNAMENT"),
            line(stock="84880", description="ASSORTED COLOUR BIRD ORNAMENT"),
        ])

        result = clean_transactions(df)

        assert result.clean.count() == 2

    def test_duplicates_from_canonicalisation_are_dropped(self, make_typed):
        df = make_typed([
            line(quantity=6, description="RED MUG"),
            line(quantity=6, description="RED  MUG"),
        ])

        row = clean_transactions(df).clean.first()

        assert row["Quantity"] == 6

    def test_duplicates_from_canonicalisation_can_be_summed(self, make_typed):
        df = make_typed([
            line(quantity=6, description="RED MUG"),
            line(quantity=6, description="RED  MUG"),
        ])

        row = clean_transactions(df, drop_canonical_duplicates=False).clean.first()

        assert row["Quantity"] == 12


@pytest.fixture
def messy_transactions(make_typed):
    return make_typed([
        line(invoice="536365", quantity=6),
        line(invoice="536365", quantity=6),                                   # exact duplicate
        line(invoice="536365", quantity=2, invoice_date=T1),                  # same line, later minute
        line(invoice="536365", stock="71053", description="WHITE METAL LANTERN", unit_price="3.39"),
        line(invoice="536366", stock="71053", description=None, unit_price="3.39"),
        line(invoice="536366", stock="71053", description="WHITE METAL  LANTERN", unit_price="3.39"),
        line(invoice="536366", stock="71053", description="WHITE METAL LANTERN", unit_price="2.99"),
        line(invoice="536367", stock="POST", description="POSTAGE", unit_price="18.00"),
        line(invoice="536368", customer=None),
        line(invoice=None, stock="22752", description="SET 7 BABUSHKA NESTING BOXES"),
        line(invoice="536369", stock="84029G", description="KNITTED UNION FLAG , HOT WATER BOTTLE",
             customer="13047"),
    ])


class TestCleanOutputProperties:

    def test_line_key_is_unique(self, messy_transactions):
        df_clean = clean_transactions(messy_transactions).clean

        assert find_duplicate_keys(df_clean).count() == 0

    def test_required_fields_present(self, messy_transactions):
        df_clean = clean_transactions(messy_transactions).clean

        for row in df_clean.collect():
            assert row["InvoiceNo"] is not None
            assert row["CustomerID"] is not None
            assert row["Description"] is not None

    def test_description_canonical_per_stock_code(self, messy_transactions):
        df_clean = clean_transactions(messy_transactions).clean

        per_code = {}
        for row in df_clean.collect():
            per_code.setdefault(row["StockCode"], set()).add(row["Description"])

        assert all(len(descriptions) == 1 for descriptions in per_code.values())
        assert per_code["84029G"] == {"KNITTED UNION FLAG, HOT WATER BOTTLE"}

    def test_expected_lines(self, messy_transactions):
        df_clean = clean_transactions(messy_transactions).clean

        lines = {
            (r["InvoiceNo"], r["StockCode"], r["UnitPrice"]): (r["Quantity"], r["InvoiceDate"])
            for r in df_clean.collect()
        }

        assert lines == {
            ("536365", "85123A", Decimal("2.55")): (8, T0),
            ("536365", "71053", Decimal("3.39")): (6, T0),
            ("536366", "71053", Decimal("3.39")): (6, T0),
            ("536366", "71053", Decimal("2.99")): (6, T0),
            ("536369", "84029G", Decimal("2.55")): (6, T0),
        }

    def test_cleaning_is_idempotent(self, messy_transactions):
        once = clean_transactions(messy_transactions).clean
        twice = clean_transactions(once).clean

        assert sorted_rows(twice) == sorted_rows(once)
        assert twice.columns == once.columns


class TestValidation:

    def test_duplicate_key_raises(self, make_typed):
        # Same invoice, product and price but two customers: not mergeable
        df = make_typed([line(customer="17850"), line(customer="13047")])

        with pytest.raises(DuplicateKeyError, match="InvoiceNo, StockCode, UnitPrice"):
            validate_unique_keys(df)

    def test_clean_transactions_fails_on_unmergeable_lines(self, make_typed):
        df = make_typed([line(customer="17850"), line(customer="13047")])

        with pytest.raises(DuplicateKeyError) as excinfo:
            clean_transactions(df)

        assert excinfo.value.duplicate_groups == 1

    def test_unique_table_passes(self, make_typed):
        df = make_typed([line(stock="85123A"), line(stock="71053")])

        validate_unique_keys(df)
