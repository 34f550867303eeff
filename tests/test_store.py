from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from codec import FieldCodec, FieldCodecError
from database import Base
from errors import ConfigurationError
from models import SavingsOperation, Transaction
from store import (
    TRANSACTIONS,
    SqlStore,
    TransactionMetadata,
    dump_metadata,
    parse_metadata,
)


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def test_parse_metadata_accepts_json_text_and_mappings() -> None:
    from_text = parse_metadata('{"operation": "withdraw", "goal_id": "4"}')
    from_dict = parse_metadata({"operation": "allocate"})

    assert from_text.operation == SavingsOperation.withdraw
    assert from_text.goal_id == 4
    assert from_dict.operation == SavingsOperation.allocate
    assert parse_metadata(None) is None
    assert parse_metadata("") is None


def test_parse_metadata_ignores_unknown_operation() -> None:
    assert parse_metadata({"operation": "transfer"}).operation is None


def test_parse_metadata_rejects_malformed_json() -> None:
    with pytest.raises(ConfigurationError):
        parse_metadata("{not json")
    with pytest.raises(ConfigurationError):
        parse_metadata("[1, 2]")


def test_dump_metadata_skips_empty_fields() -> None:
    meta = TransactionMetadata(operation=SavingsOperation.allocate, goal_id=2)

    assert dump_metadata(meta) == '{"goal_id": 2, "operation": "allocate"}'
    assert dump_metadata(None) is None


def test_codec_detects_tampering() -> None:
    codec = FieldCodec("test-secret")
    token = codec.encode_field("Groceries")

    assert token != "Groceries"
    assert codec.decode_field(token) == "Groceries"
    payload, _signature = token.rsplit(".", 1)
    _other, foreign_signature = codec.encode_field("Rent").rsplit(".", 1)
    with pytest.raises(FieldCodecError):
        codec.decode_field(f"{payload}.{foreign_signature}")
    with pytest.raises(FieldCodecError):
        FieldCodec("other-secret").decode_field(token)


def test_select_by_user_filters_and_decodes() -> None:
    session = make_session()
    codec = FieldCodec("test-secret")
    rows = [
        ("u1", date(2024, 1, 5)),
        ("u1", date(2024, 2, 1)),
        ("u2", date(2024, 1, 6)),
    ]
    for user_id, day in rows:
        session.add(
            Transaction(
                **codec.encode_row(
                    TRANSACTIONS,
                    {
                        "user_id": user_id,
                        "description": f"note {day}",
                        "amount": Decimal("12.50"),
                        "type_id": 1,
                        "category": "Food",
                        "date": day,
                        "metadata_json": '{"operation": "allocate"}',
                    },
                )
            )
        )
    session.commit()

    store = SqlStore(session, codec)
    january = store.select_by_user(
        TRANSACTIONS, "u1", date_from=date(2024, 1, 1), date_to=date(2024, 1, 31)
    )

    assert len(january) == 1
    record = january[0]
    assert record.description == "note 2024-01-05"
    assert record.amount == Decimal("12.50")
    assert record.metadata.operation == SavingsOperation.allocate
    assert len(store.select_by_user(TRANSACTIONS, "u1")) == 2
