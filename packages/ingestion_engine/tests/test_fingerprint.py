from datetime import datetime

from packages.ingestion_engine.import_transactions import generate_fingerprint, normalize_description

TS = datetime(2026, 2, 12, 10, 0, 0)


def test_generate_fingerprint_consistency():
    """
    Test that the same transaction data always generates the same fingerprint.
    SHA256({ISO_Timestamp_Sec}|{Description_Normalized}|{Amount_2dp}|{Currency})
    """
    fp1 = generate_fingerprint(TS, "Starbucks", -150.00, "GBP")
    fp2 = generate_fingerprint(TS, "Starbucks", -150.00, "GBP")

    assert fp1 == fp2
    assert isinstance(fp1, str)
    assert len(fp1) == 64  # SHA256 hex digest length


def test_generate_fingerprint_normalization():
    """
    Whitespace and case variations in the description don't affect the fingerprint.
    """
    fp1 = generate_fingerprint(TS, "Starbucks  London ", -150.00, "gbp")
    fp2 = generate_fingerprint(TS, "STARBUCKS LONDON", -150.0, "GBP")

    assert fp1 == fp2


def test_generate_fingerprint_differentiation():
    """
    Test that different transactions have different fingerprints.
    """
    fp1 = generate_fingerprint(TS, "Starbucks", -150.00, "GBP")
    fp2 = generate_fingerprint(TS.replace(second=1), "Starbucks", -150.00, "GBP")  # 1 second later
    fp3 = generate_fingerprint(TS, "Starbucks", -150.01, "GBP")  # 1 penny different
    fp4 = generate_fingerprint(TS, "Starbucks", -150.00, "EUR")
    fp5 = generate_fingerprint(TS, "Starbucks", 150.00, "GBP")  # refund

    assert len({fp1, fp2, fp3, fp4, fp5}) == 5


def test_fingerprint_ignores_sub_second_precision():
    assert generate_fingerprint(TS.replace(microsecond=999), "X", 1.0, "GBP") == generate_fingerprint(
        TS, "X", 1.0, "GBP"
    )


def test_normalize_description_handles_empty():
    assert normalize_description("") == ""
    assert normalize_description(None) == ""
    assert normalize_description(" tesco\tstores ") == "TESCO STORES"
