import io
from datetime import datetime

import pytest
from fastapi import HTTPException

import config
from reports import deliveries_csv, monthly_summary
from schemas import crate_total
from tests.conftest import insert_order
from uploads import save_payment_proof


class FakeUpload:
    def __init__(self, filename, content_type, data):
        self.filename = filename
        self.content_type = content_type
        self.file = io.BytesIO(data)


def test_crate_total_uses_price_list():
    assert crate_total({"amul_taaza_crates": 1, "amul_buffalo_crates": 1}) == 1445.64
    assert crate_total({}) == 0


def test_monthly_summary_without_orders(db):
    summary = monthly_summary(db, datetime(2024, 2, 15))
    assert summary["month"] == "2024-02"
    assert summary["total_orders"] == 0
    assert summary["most_ordered_product"] is None
    assert summary["top_customers"] == []


def test_monthly_summary_ranks_shops(db, customer):
    now = datetime(2024, 2, 15, 12, 0)
    insert_order(db, customer, datetime(2024, 2, 3, 7, 0), shop_name="A", mahananda_crates=1)
    insert_order(db, customer, datetime(2024, 2, 4, 7, 0), shop_name="B", amul_gold_crates=1)
    insert_order(db, customer, datetime(2024, 2, 5, 7, 0), shop_name="C", gokul_cow_crates=3)
    insert_order(db, customer, datetime(2024, 2, 6, 7, 0), shop_name="D", gokul_cow_crates=1)
    insert_order(db, customer, datetime(2024, 1, 30, 7, 0), shop_name="Old", amul_gold_crates=9)

    summary = monthly_summary(db, now)
    assert summary["total_orders"] == 4
    assert summary["total_crates"] == 6
    assert summary["most_ordered_product"] == "gokul_cow_crates"
    assert [s["shop_name"] for s in summary["top_customers"]] == ["B", "C", "A"]


def test_deliveries_csv_has_header_for_empty_day(db):
    text = deliveries_csv(db, datetime(2024, 2, 1))
    assert text.splitlines()[0].startswith("shop_name,address,delivery_date")
    assert len(text.splitlines()) == 1


def test_upload_limits(monkeypatch):
    monkeypatch.setattr(config, "MAX_UPLOAD_BYTES", 10)
    with pytest.raises(HTTPException) as exc:
        save_payment_proof(FakeUpload("proof.png", "image/png", b"x" * 11))
    assert exc.value.status_code == 400
    with pytest.raises(HTTPException):
        save_payment_proof(FakeUpload("proof.png", "image/png", b""))
    with pytest.raises(HTTPException):
        save_payment_proof(FakeUpload("proof.exe", "image/png", b"x"))
    assert save_payment_proof(FakeUpload("proof.JPG", "image/jpeg", b"x")).endswith(".jpg")
